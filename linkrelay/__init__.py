"""
link-relay relays a bucketed activity stream and expands shortened links.

The relay does four things
==========================
    1. Pick the next minute bucket of the source stream (relay/buckets.py)
    2. Fetch the bucket's activities (stream/)
    3. Expand every shortened link in the activity bodies (relay/pipeline.py,
       expanders/)
    4. Publish the rewritten activities and commit the checkpoint
       (relay/service.py, relay/state.py)

The daemon supervisor (daemon/supervisor.py) keeps a single instance running
under an exclusive lock and answers start, stop, restart and pid commands.
"""

__version__ = "0.1.0"
