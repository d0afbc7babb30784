"""Override registry: persisted false-positive / accepted dispositions keyed by fingerprint."""

from __future__ import annotations

import enum
import json
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from valence.engine.confidence import compute_fingerprint
from valence.engine.resolver import normalize_path
from valence.errors import OverrideFileError

if TYPE_CHECKING:
    from pathlib import Path

    from valence.engine.confidence import Violation

logger = logging.getLogger(__name__)

OVERRIDE_FILE_VERSION = "1.0"
DEFAULT_OVERRIDE_FILE = ".valence-overrides.json"
RECENT_WINDOW = timedelta(days=7)


class OverrideStatus(enum.Enum):
    """Disposition recorded for a violation fingerprint."""

    FALSE_POSITIVE = "false_positive"
    ACCEPTED = "accepted"


@dataclass(frozen=True)
class Override:
    """One stored disposition."""

    fingerprint: str
    rule: str
    file_path: str
    status: OverrideStatus
    reason: str
    added_by: str = "unknown"
    timestamp: str = ""
    validator: str | None = None
    imported_at: str | None = None

    @classmethod
    def from_dict(cls, fingerprint: str, data: dict[str, object]) -> Override:
        """Parse one entry of the ``overrides`` mapping.

        Raises ``ValueError`` for an unknown status.
        """
        status = OverrideStatus(str(data.get("status", OverrideStatus.FALSE_POSITIVE.value)))
        validator = data.get("validator")
        imported_at = data.get("importedAt")
        return cls(
            fingerprint=fingerprint,
            rule=str(data.get("rule", "")),
            file_path=str(data.get("filePath", "")),
            status=status,
            reason=str(data.get("reason", "")),
            added_by=str(data.get("addedBy", "unknown")),
            timestamp=str(data.get("timestamp", data.get("addedAt", ""))),
            validator=str(validator) if validator is not None else None,
            imported_at=str(imported_at) if imported_at is not None else None,
        )

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "rule": self.rule,
            "filePath": self.file_path,
            "status": self.status.value,
            "reason": self.reason,
            "addedBy": self.added_by,
            "timestamp": self.timestamp,
        }
        if self.validator is not None:
            data["validator"] = self.validator
        if self.imported_at is not None:
            data["importedAt"] = self.imported_at
        return data


@dataclass
class OverrideStatistics:
    """Counts reported by ``valence validate --show-overrides``."""

    total: int = 0
    recent: int = 0
    by_rule: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_author: dict[str, int] = field(default_factory=dict)


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_entries(entries: dict[object, object], source: str) -> dict[str, Override]:
    overrides: dict[str, Override] = {}
    for fingerprint, entry in entries.items():
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed override %s in %s", fingerprint, source)
            continue
        try:
            overrides[str(fingerprint)] = Override.from_dict(str(fingerprint), entry)
        except ValueError:
            logger.warning(
                "Skipping override %s with unknown status %r", fingerprint, entry.get("status")
            )
    return overrides


class OverrideRegistry:
    """File-backed override store.

    The file is read once with :meth:`load` at run start. During a run the
    registry is only queried; :meth:`add` and :meth:`remove` are used by the
    ``valence override`` commands and persist immediately.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._overrides: dict[str, Override] = {}

    def __len__(self) -> int:
        return len(self._overrides)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._overrides

    # -- persistence ---------------------------------------------------------

    def load(self) -> OverrideRegistry:
        """Read the override file; a missing file yields an empty registry.

        Raises :class:`OverrideFileError` when the file is not valid JSON or
        does not have the ``{version, overrides}`` shape.
        """
        self._overrides = {}
        if not self.path.is_file():
            return self

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = f"Cannot read override file {self.path}: {exc}"
            raise OverrideFileError(msg) from exc

        if not isinstance(data, dict):
            msg = f"Override file {self.path} must contain a JSON object"
            raise OverrideFileError(msg)
        entries = data.get("overrides", {})
        if not isinstance(entries, dict):
            msg = f"Override file {self.path}: 'overrides' must be an object"
            raise OverrideFileError(msg)

        self._overrides = _parse_entries(entries, str(self.path))
        logger.debug("Loaded %d overrides from %s", len(self._overrides), self.path)
        return self

    def export(self) -> dict[str, object]:
        """Snapshot of every override, suitable for :meth:`import_` elsewhere."""
        return {
            "version": OVERRIDE_FILE_VERSION,
            "exportedAt": datetime.now(tz=timezone.utc).isoformat(),
            "overrides": {
                fp: override.to_dict() for fp, override in sorted(self._overrides.items())
            },
        }

    def import_(self, data: object, *, merge: bool = True, save: bool = True) -> int:
        """Add the overrides of an exported snapshot; returns the new total.

        Imported entries replace existing ones with the same fingerprint and
        are stamped with ``importedAt``. With ``merge=False`` the registry is
        cleared first. Raises :class:`OverrideFileError` when *data* does not
        have the ``{overrides: {...}}`` shape.
        """
        if not isinstance(data, dict):
            msg = "Override import must be a JSON object"
            raise OverrideFileError(msg)
        entries = data.get("overrides", {})
        if not isinstance(entries, dict):
            msg = "Override import: 'overrides' must be an object"
            raise OverrideFileError(msg)

        imported_at = datetime.now(tz=timezone.utc).isoformat()
        parsed = _parse_entries(entries, "import")
        if not merge:
            self._overrides = {}
        for fingerprint, override in parsed.items():
            self._overrides[fingerprint] = replace(override, imported_at=imported_at)
        logger.info("Imported %d overrides (merge=%s)", len(parsed), merge)
        if save:
            self.save()
        return len(self._overrides)

    def save(self) -> None:
        """Write the registry back to disk as indented JSON."""
        data = {
            "version": OVERRIDE_FILE_VERSION,
            "lastUpdated": datetime.now(tz=timezone.utc).isoformat(),
            "overrides": {
                fp: override.to_dict() for fp, override in sorted(self._overrides.items())
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    # -- mutation ------------------------------------------------------------

    def add(
        self,
        validator: str,
        rule: str,
        file_path: str,
        *,
        reason: str,
        added_by: str = "unknown",
        status: OverrideStatus = OverrideStatus.FALSE_POSITIVE,
        save: bool = True,
    ) -> Override:
        """Record a disposition for the (validator, rule, file) fingerprint."""
        fingerprint = compute_fingerprint(validator, rule, file_path)
        override = Override(
            fingerprint=fingerprint,
            rule=rule,
            file_path=normalize_path(file_path),
            status=status,
            reason=reason,
            added_by=added_by,
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            validator=validator,
        )
        self._overrides[fingerprint] = override
        if save:
            self.save()
        return override

    def remove(self, fingerprint: str, *, save: bool = True) -> bool:
        """Delete an override; returns False when *fingerprint* is unknown."""
        removed = self._overrides.pop(fingerprint, None) is not None
        if removed and save:
            self.save()
        return removed

    # -- queries -------------------------------------------------------------

    def get(self, fingerprint: str) -> Override | None:
        return self._overrides.get(fingerprint)

    def entries(self) -> list[Override]:
        """All overrides ordered by timestamp, then fingerprint."""
        return sorted(self._overrides.values(), key=lambda o: (o.timestamp, o.fingerprint))

    def statistics(self, *, now: datetime | None = None) -> OverrideStatistics:
        """Totals by rule, status and author, plus additions in the last 7 days."""
        now = now or datetime.now(tz=timezone.utc)
        overrides = list(self._overrides.values())
        recent = 0
        for override in overrides:
            added = _parse_timestamp(override.timestamp)
            if added is not None and now - added <= RECENT_WINDOW:
                recent += 1
        return OverrideStatistics(
            total=len(overrides),
            recent=recent,
            by_rule=dict(sorted(Counter(o.rule for o in overrides).items())),
            by_status=dict(sorted(Counter(o.status.value for o in overrides).items())),
            by_author=dict(sorted(Counter(o.added_by for o in overrides).items())),
        )

    def apply(self, violations: list[Violation]) -> tuple[list[Violation], int]:
        """Flag violations whose fingerprint has an override.

        Violations are never removed; matched ones are returned as
        suppressed copies. Returns ``(violations, applied_count)``.
        """
        result: list[Violation] = []
        applied = 0
        for violation in violations:
            override = self._overrides.get(violation.fingerprint)
            if override is None:
                result.append(violation)
                continue
            result.append(violation.with_override(override.status.value, override.reason))
            applied += 1
        return result, applied
