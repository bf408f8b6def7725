# Overview: Payment-method descriptor text format, including inline [CAP:<amount>] cash-advance tokens.

"""
Payment descriptor format

Sales persist how they were paid as one free-text column, e.g.

    PAGO MOVIL (Ref: 0412) + EFECTIVO [CAP:50.00] + [ABONO 20.00: ZELLE (Ref: 99)]

- Method tokens: "METHOD" or "METHOD (Ref: X)", joined with " + ".
- Cash-advance tokens: " [CAP:<amount>]", one per advance line, always with a
  leading space. The amount is cash that left the till even though the sale
  itself was settled digitally.
- Notes: later payments and voids append " + [NOTE]"; existing text is never
  rewritten.

PaymentDescriptor is the structured form. It serializes to the text format
only at the persistence boundary; Sale.advance_usd_cents keeps the advance
total as a structured column as well.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from bms_pos.money import format_cents, parse_amount_to_cents

CAP_TOKEN_RE = re.compile(r"\[CAP:(\d+(\.\d+)?)\]")
_REF_RE = re.compile(r"^(?P<method>.*?)\s*\(Ref:\s*(?P<ref>[^)]*)\)$")
_NOTE_RE = re.compile(r"^\[(?P<note>.*)\]$")

METHOD_SEPARATOR = " + "


@dataclass(frozen=True)
class PaymentToken:
    method: str
    reference: str | None = None

    def to_text(self) -> str:
        if self.reference:
            return f"{self.method} (Ref: {self.reference})"
        return self.method

    @classmethod
    def parse(cls, text: str) -> "PaymentToken":
        text = text.strip()
        m = _REF_RE.match(text)
        if m:
            return cls(method=m.group("method").strip(), reference=m.group("ref").strip() or None)
        return cls(method=text)


@dataclass
class PaymentDescriptor:
    method_tokens: list[PaymentToken] = field(default_factory=list)
    advances_cents: list[int] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def advance_total_cents(self) -> int:
        return sum(self.advances_cents)

    def add_advance(self, amount_cents: int) -> None:
        if amount_cents <= 0:
            raise ValueError("advance amount must be positive")
        self.advances_cents.append(amount_cents)

    def to_text(self) -> str:
        text = METHOD_SEPARATOR.join(t.to_text() for t in self.method_tokens)
        text += "".join(" " + cap_token(c) for c in self.advances_cents)
        for note in self.notes:
            text = append_note(text, note)
        return text.strip()

    @classmethod
    def parse(cls, text: str | None) -> "PaymentDescriptor":
        """Read-side inverse of to_text(); tolerant of legacy free text."""
        descriptor = cls()
        if not text:
            return descriptor

        descriptor.advances_cents = extract_advance_tokens(text)
        remainder = CAP_TOKEN_RE.sub("", text)
        for part in remainder.split(METHOD_SEPARATOR.strip()):
            part = part.strip()
            if not part:
                continue
            note = _NOTE_RE.match(part)
            if note:
                descriptor.notes.append(note.group("note"))
            else:
                descriptor.method_tokens.append(PaymentToken.parse(part))
        return descriptor

    def to_dict(self) -> dict:
        return {
            "methods": [{"method": t.method, "reference": t.reference} for t in self.method_tokens],
            "advances_usd_cents": list(self.advances_cents),
            "advance_total_usd_cents": self.advance_total_cents,
            "notes": list(self.notes),
        }


def cap_token(amount_cents: int) -> str:
    return f"[CAP:{format_cents(amount_cents)}]"


def extract_advance_tokens(text: str | None) -> list[int]:
    """Every [CAP:x] amount in text, in order, as cents."""
    if not text:
        return []
    return [parse_amount_to_cents(m.group(1)) for m in CAP_TOKEN_RE.finditer(text)]


def append_advance_tokens(text: str | None, amounts_cents: list[int]) -> str:
    """Concatenate one ' [CAP:x]' per amount onto the descriptor text."""
    text = text or ""
    return text + "".join(" " + cap_token(c) for c in amounts_cents)


def append_note(text: str | None, note: str) -> str:
    """Append ' + [note]' without touching the existing content."""
    if not text:
        return f"[{note}]"
    return f"{text}{METHOD_SEPARATOR}[{note}]"
