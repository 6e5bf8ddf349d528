from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import vobject

from cakeday.models import (
    EVENT_KIND_ANNIVERSARY,
    EVENT_KIND_BIRTHDAY,
    EVENT_KIND_CUSTOM,
    EVENT_KIND_OTHER,
    Account,
    ContactsConfig,
    ContactSourceConfig,
    RawEventRecord,
)


logger = logging.getLogger(__name__)

# Apple address books wrap their built-in labels as _$!<Name>!$_
APPLE_LABEL_PATTERN = re.compile(r"_\$!<(.*)>!\$_")
ANNIVERSARY_PROPERTIES = ("anniversary", "x-anniversary")


def _line_value(card: Any, name: str) -> str:
    lines = card.contents.get(name) or []
    if not lines:
        return ""
    return str(lines[0].value or "").strip()


def _classify_label(raw_label: str | None) -> tuple[str, str | None]:
    if not raw_label:
        return EVENT_KIND_OTHER, None
    match = APPLE_LABEL_PATTERN.fullmatch(raw_label.strip())
    if match:
        builtin = match.group(1).strip().casefold()
        if builtin == "anniversary":
            return EVENT_KIND_ANNIVERSARY, None
        if builtin == "other":
            return EVENT_KIND_OTHER, None
        return EVENT_KIND_CUSTOM, match.group(1).strip()
    return EVENT_KIND_CUSTOM, raw_label.strip()


def events_from_card(card: Any, account: Account | None) -> list[RawEventRecord]:
    display_name = _line_value(card, "fn") or None
    lookup_key = _line_value(card, "uid") or display_name

    records: list[RawEventRecord] = []

    def add(kind: str, label: str | None, value: Any) -> None:
        records.append(
            RawEventRecord(
                account=account,
                display_name=display_name,
                lookup_key=lookup_key,
                kind=kind,
                label=label,
                date_string=str(value or "").strip() or None,
            )
        )

    for line in card.contents.get("bday", []):
        add(EVENT_KIND_BIRTHDAY, None, line.value)
    for name in ANNIVERSARY_PROPERTIES:
        for line in card.contents.get(name, []):
            add(EVENT_KIND_ANNIVERSARY, None, line.value)

    labels_by_group = {
        line.group: str(line.value or "")
        for line in card.contents.get("x-ablabel", [])
        if line.group
    }
    for line in card.contents.get("x-abdate", []):
        kind, label = _classify_label(labels_by_group.get(line.group) if line.group else None)
        add(kind, label, line.value)
    return records


def _vcard_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(item for item in path.iterdir() if item.suffix.lower() == ".vcf" and item.is_file())
    if path.is_file():
        return [path]
    return []


class VCardContactStore:
    def __init__(self, config: ContactsConfig) -> None:
        self.config = config

    @staticmethod
    def _source_account(source: ContactSourceConfig) -> Account | None:
        if not source.account_name and not source.account_type:
            return None
        return Account(source.account_name, source.account_type)

    def query_event_records(self) -> list[RawEventRecord]:
        records: list[RawEventRecord] = []
        for source in self.config.sources:
            account = self._source_account(source)
            files = _vcard_files(Path(source.path).expanduser())
            if not files:
                logger.warning("No vCard files found at %s", source.path)
            for vcf_path in files:
                records.extend(self._read_file(vcf_path, account))
        logger.info("Read %d contact events from %d sources", len(records), len(self.config.sources))
        return records

    def _read_file(self, vcf_path: Path, account: Account | None) -> list[RawEventRecord]:
        try:
            text = vcf_path.read_text(encoding="utf-8", errors="replace")
            cards = list(vobject.readComponents(text))
        except (OSError, vobject.base.ParseError) as exc:
            logger.error("Unable to read contacts from %s: %s", vcf_path, exc)
            return []
        records: list[RawEventRecord] = []
        for card in cards:
            if getattr(card, "name", "").upper() != "VCARD":
                continue
            records.extend(events_from_card(card, account))
        return records

    def query_blacklisted_accounts(self) -> set[Account]:
        return {Account(item["name"], item["type"]) for item in self.config.blacklisted_accounts}
