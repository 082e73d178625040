"""Media load testing against a room."""

from .agent_loadtest import AgentLoadTest, AgentLoadTestParams, RoomStats
from .engine import SUITE_CASES, LoadTest
from .params import Layout, LoadTestParams, TesterParams, VideoQuality, choose_quality
from .ramp import RampTicker
from .report import LoadTestReport, SuiteRow
from .speaker import SpeakerSimulator
from .stats import TrackStats, format_bitrate, format_loss_rate, format_percentage
from .tester import LoadTester

__all__ = [
    # Parameters
    "Layout",
    "LoadTestParams",
    "TesterParams",
    "VideoQuality",
    "choose_quality",
    # Engine
    "LoadTest",
    "LoadTester",
    "RampTicker",
    "SpeakerSimulator",
    "SUITE_CASES",
    # Stats
    "TrackStats",
    "LoadTestReport",
    "SuiteRow",
    "format_bitrate",
    "format_loss_rate",
    "format_percentage",
    # Agents
    "AgentLoadTest",
    "AgentLoadTestParams",
    "RoomStats",
]
