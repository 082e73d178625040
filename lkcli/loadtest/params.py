"""
Load-test parameters, layouts and the simulcast quality policy.
"""

import math
import random
import string
from collections import Counter
from dataclasses import dataclass, replace
from enum import Enum
from urllib.parse import urlparse

from lkcli.core.errors import InputError

DEFAULT_NUM_PER_SECOND = 5.0
MAX_NUM_PER_SECOND = 10.0
CLOUD_HOST_SUFFIX = ".livekit.cloud"
CLOUD_PARTICIPANT_LIMIT = 50
CLOUD_REFUSAL = (
    "Unable to perform load test on LiveKit Cloud. Load testing is prohibited by our "
    "acceptable use policy: https://livekit.io/legal/acceptable-use-policy"
)

RESOLUTIONS = ("high", "medium", "low")
CODECS = ("h264", "vp8")


class Layout(str, Enum):
    """Subscription shape a subscriber emulates."""

    SPEAKER = "speaker"  # one at 1280x720, five at thumbnails
    GRID3X3 = "3x3"
    GRID4X4 = "4x4"
    GRID5X5 = "5x5"

    @classmethod
    def from_string(cls, value: str | None) -> "Layout":
        """Layout named `value`; unset means SPEAKER."""
        if not value:
            return cls.SPEAKER
        for layout in cls:
            if layout.value == value:
                return layout
        raise InputError(f"invalid layout [{value}], expected one of {', '.join(layout.value for layout in cls)}")

    @property
    def subscribe_count(self) -> int:
        """Number of remote participants a subscriber follows."""
        return {
            Layout.SPEAKER: 6,
            Layout.GRID3X3: 9,
            Layout.GRID4X4: 16,
            Layout.GRID5X5: 25,
        }[self]


class VideoQuality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    OFF = "off"


DIMENSIONS = {
    VideoQuality.HIGH: (1280, 720),
    VideoQuality.MEDIUM: (640, 360),
    VideoQuality.LOW: (320, 180),
}


def choose_quality(layout: Layout, counts: Counter) -> VideoQuality:
    """
    Target quality for a newly subscribed video track.

    `counts` holds the qualities already assigned by this subscriber.
    """
    if layout is Layout.SPEAKER:
        if counts[VideoQuality.HIGH] == 0:
            return VideoQuality.HIGH
        if counts[VideoQuality.LOW] < 5:
            return VideoQuality.LOW
    elif layout is Layout.GRID3X3:
        if counts[VideoQuality.MEDIUM] < 9:
            return VideoQuality.MEDIUM
    elif layout is Layout.GRID4X4:
        if counts[VideoQuality.LOW] < 16:
            return VideoQuality.LOW
    elif layout is Layout.GRID5X5:
        if counts[VideoQuality.LOW] < 25:
            return VideoQuality.LOW
    return VideoQuality.OFF


def random_letters(n: int) -> str:
    return "".join(random.choice(string.ascii_lowercase) for _ in range(n))


@dataclass
class TesterParams:
    url: str = ""
    api_key: str = ""
    api_secret: str = ""
    room: str = ""
    identity_prefix: str = ""
    layout: Layout = Layout.SPEAKER
    name: str = ""
    sequence: int = 0
    expected_tracks: int = 0
    # identities of the remote publishers to subscribe to
    follow: frozenset[str] = frozenset()

    @property
    def identity(self) -> str:
        return f"{self.identity_prefix}_{self.sequence}"


@dataclass
class LoadTestParams:
    url: str = ""
    api_key: str = ""
    api_secret: str = ""
    room: str = ""
    identity_prefix: str = ""
    layout: Layout = Layout.SPEAKER

    video_publishers: int = 0
    audio_publishers: int = 0
    subscribers: int = 0
    video_resolution: str = "high"
    video_codec: str = ""
    video_bitrate: int | None = None
    duration: float = 0.0  # seconds; 0 runs until cancelled
    num_per_second: float = DEFAULT_NUM_PER_SECOND
    simulcast: bool = True
    simulate_speakers: bool = False

    def normalized(self) -> "LoadTestParams":
        """Copy with defaults applied and the ramp rate clamped."""
        p = replace(self)
        if p.num_per_second <= 0:
            p.num_per_second = DEFAULT_NUM_PER_SECOND
        p.num_per_second = min(p.num_per_second, MAX_NUM_PER_SECOND)
        if p.video_publishers == 0 and p.audio_publishers == 0 and p.subscribers == 0:
            p.video_publishers = 1
            p.subscribers = 1
        if p.video_resolution not in RESOLUTIONS:
            raise InputError(f"invalid video resolution [{p.video_resolution}], expected one of {', '.join(RESOLUTIONS)}")
        if p.video_codec and p.video_codec not in CODECS:
            raise InputError(f"invalid video codec [{p.video_codec}], expected one of {', '.join(CODECS)}")
        return p

    def with_run_defaults(self) -> "LoadTestParams":
        """Fill in a random room and identity prefix for one run."""
        p = replace(self)
        if not p.room:
            p.room = f"testroom{random.randrange(1000)}"
        if not p.identity_prefix:
            p.identity_prefix = random_letters(5)
        return p

    @property
    def publisher_count(self) -> int:
        return max(self.video_publishers, self.audio_publishers)

    @property
    def tester_count(self) -> int:
        return self.publisher_count + self.subscribers

    @property
    def followed_publishers(self) -> range:
        """Sequences of the publishers every subscriber follows: the first ones, bounded by the layout."""
        return range(min(self.publisher_count, self.layout.subscribe_count))

    def publisher_identity(self, sequence: int) -> str:
        return f"{self.identity_prefix}_pub_{sequence}"

    @property
    def expected_tracks(self) -> int:
        """Tracks each subscriber should receive from the publishers it follows."""
        return sum(
            int(i < self.video_publishers) + int(i < self.audio_publishers) for i in self.followed_publishers
        )

    def ramp_seconds(self) -> int:
        """Whole seconds the ramp needs to release every tester."""
        return math.ceil(self.tester_count / math.ceil(self.num_per_second))

    def check_cloud_limits(self) -> None:
        host = urlparse(self.url).hostname or ""
        if not host.endswith(CLOUD_HOST_SUFFIX):
            return
        if max(self.video_publishers, self.audio_publishers, self.subscribers) > CLOUD_PARTICIPANT_LIMIT:
            raise InputError(CLOUD_REFUSAL)

    def tester_params(self, sequence: int) -> TesterParams:
        """Role, name and expectations of the tester at `sequence`."""
        params = TesterParams(
            url=self.url,
            api_key=self.api_key,
            api_secret=self.api_secret,
            room=self.room,
            identity_prefix=self.identity_prefix,
            layout=self.layout,
            sequence=sequence,
            expected_tracks=self.expected_tracks,
        )
        if sequence < self.publisher_count:
            # publishers do not receive their own tracks
            params.expected_tracks = 0
            params.identity_prefix += "_pub"
            params.name = f"Pub {sequence}"
        else:
            params.follow = frozenset(self.publisher_identity(i) for i in self.followed_publishers)
            params.name = f"Sub {sequence - self.publisher_count}"
        return params
