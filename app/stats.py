"""
Per-track listening statistics.

- play_cnt: number of times a track was played to completion.
- skip_cnt: number of times a track was skipped.
Persisted as {"play_cnt": <int>, "skip_cnt": <int>} in stickers or tags.
"""

from __future__ import annotations
import json
from dataclasses import dataclass

# Identifies our record in the sticker database and in tag comments
MARKER = "mp_rater"


@dataclass
class Statistics:
    play_cnt: int = 0
    skip_cnt: int = 0

    def played(self) -> None:
        self.play_cnt += 1

    def skipped(self) -> None:
        self.skip_cnt += 1

    @property
    def rating(self) -> float:
        """Plays dampened by skips, scaled by how often the track came up at all."""
        return self.play_cnt / (self.skip_cnt + 1) * (self.play_cnt + self.skip_cnt)

    def to_json(self) -> str:
        return json.dumps({"play_cnt": self.play_cnt, "skip_cnt": self.skip_cnt})

    @classmethod
    def from_json(cls, text: str) -> "Statistics":
        """Parse the persisted form. Raises ValueError on anything malformed."""
        try:
            data = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"invalid statistics json: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"statistics must be a json object, got {type(data).__name__}")

        counts = {}
        for key in ("play_cnt", "skip_cnt"):
            value = data.get(key)
            # bool is an int subclass; reject it explicitly
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
            counts[key] = value
        return cls(**counts)
