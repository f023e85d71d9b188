"""Link expanders: strategies that resolve short links to their long form."""

from linkrelay.expanders.base import Expander
from linkrelay.expanders.bitly import BitlyExpander
from linkrelay.expanders.chain import ExpanderChain
from linkrelay.expanders.redirect import RedirectExpander, ShortenerExpander

__all__ = [
    "BitlyExpander",
    "Expander",
    "ExpanderChain",
    "RedirectExpander",
    "ShortenerExpander",
]
