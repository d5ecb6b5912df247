"""Loop constants.

Clinically or operationally significant values live here with their
rationale. Runtime overrides come from settings where noted.
"""

from typing import Final

# Minimum number of glucose samples in the refreshed dataset before the
# recommendation engine may run. 36 samples = 3 hours of 5-minute CGM
# readings, the window the engine needs for its trend and IOB inputs.
# Overridable via CLOSEDLOOP_MIN_GLUCOSE_SAMPLES.
MIN_GLUCOSE_SAMPLES: Final[int] = 36

# Fixed logical record names. Records are addressed by name, not content.
MONITOR_STATUS: Final[str] = "monitor/status.json"
MONITOR_TEMP_BASAL: Final[str] = "monitor/temp_basal.json"
ENACT_SUGGESTED: Final[str] = "enact/suggested.json"
ENACT_ENACTED: Final[str] = "enact/enacted.json"

SECONDS_PER_MINUTE: Final[int] = 60

# Announcement ids remembered as enacted by this process. The store's
# ``enacted`` flag is authoritative; this only covers callers holding a
# stale copy of a recent announcement.
ENACTED_ID_MEMORY: Final[int] = 256
