"""Source stream and destination feed collaborators."""

from linkrelay.stream.base import ActivityStream, Publisher
from linkrelay.stream.schemas import URL_PATTERN, Activity

__all__ = ["Activity", "ActivityStream", "Publisher", "URL_PATTERN"]
