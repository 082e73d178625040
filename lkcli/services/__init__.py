"""Twirp clients for the LiveKit server APIs."""

from .gather import gather_pair, gather_settled
from .media import DispatchClient, EgressClient, IngressClient, ReplayClient
from .phone_numbers import PhoneNumberClient
from .rooms import RoomClient
from .sip import SIPClient
from .twirp import TwirpClient, twirp_error

__all__ = [
    "TwirpClient",
    "twirp_error",
    "gather_pair",
    "gather_settled",
    # Services
    "RoomClient",
    "SIPClient",
    "IngressClient",
    "EgressClient",
    "ReplayClient",
    "DispatchClient",
    "PhoneNumberClient",
]
