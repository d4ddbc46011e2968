"""Question-name parsing and the per-service query grammars.

Brief:
  A question name such as ``25usd-eur.fx.`` is split into its zone (the last
  label, ``fx``) and the parameter labels that precede it. Each service then
  applies its own grammar to the parameter labels:

    - place (time, weather): ``<place>[.<cc>]``; hyphens and underscores stand
      in for spaces, the optional two-letter label is a country-code hint.
    - fx: ``[<amount>]<FROM>-<TO>``; the labels are re-joined with "." first
      because a decimal amount (``99.5jpy-inr``) spans two labels.
    - none (myip): no parameter labels at all.

Any mismatch raises FormatError before a service does any work.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional, Sequence, Tuple

from dnslib import QTYPE

from .errors import FormatError

_PLACE_LABEL = re.compile(r"^[a-z0-9'_-]+$")
_HINT_LABEL = re.compile(r"^[a-z]{2}$")
_FX_QUERY = re.compile(r"^(\d+(?:\.\d+)?)?([a-z]{3})-([a-z]{3})$")


@dataclass(frozen=True)
class Query:
    """Brief: One decoded question.

    Inputs (fields):
      - qname: Question name as received (original case, trailing dot kept).
      - zone: Lowercased top-level label used for routing.
      - labels: Lowercased parameter labels, left to right.
      - qtype: Numeric question type.
      - client_ip: Requester's transport address.
    """

    qname: str
    zone: str
    labels: Tuple[str, ...]
    qtype: int
    client_ip: str


class PlaceQuery(NamedTuple):
    name: str
    hint: Optional[str]


class FxQuery(NamedTuple):
    amount: Decimal
    source: str
    target: str


def parse_qname(qname: str, qtype: int = QTYPE.TXT, client_ip: str = "") -> Query:
    """Brief: Split a question name into zone and parameter labels.

    Inputs:
      - qname: Question name, any case, with or without the trailing dot.
      - qtype: Numeric question type.
      - client_ip: Requester address.

    Outputs:
      - Query.

    Raises:
      - FormatError: For the root name or names with empty labels.

    Example:
      >>> q = parse_qname("Mumbai.TIME.")
      >>> (q.zone, q.labels)
      ('time', ('mumbai',))
    """

    text = str(qname or "").strip()
    norm = text.rstrip(".").lower()
    if not norm:
        raise FormatError("empty question name")

    parts = norm.split(".")
    if any(not p for p in parts):
        raise FormatError(f"empty label in {qname!r}")

    return Query(
        qname=text,
        zone=parts[-1],
        labels=tuple(parts[:-1]),
        qtype=int(qtype),
        client_ip=str(client_ip or ""),
    )


def parse_place(labels: Sequence[str]) -> PlaceQuery:
    """Brief: Parse the place grammar shared by the time and weather zones.

    Inputs:
      - labels: Parameter labels of the query.

    Outputs:
      - PlaceQuery(name, hint) with the name's hyphens/underscores turned into
        spaces and the hint uppercased (or None).

    Raises:
      - FormatError: When the labels do not form a place query.
    """

    if not labels or len(labels) > 2:
        raise FormatError("expected <place> or <place>.<country code>")

    raw = labels[0]
    if not _PLACE_LABEL.match(raw) or not any(c.isalpha() for c in raw):
        raise FormatError(f"invalid place label {raw!r}")

    hint: Optional[str] = None
    if len(labels) == 2:
        if not _HINT_LABEL.match(labels[1]):
            raise FormatError(f"invalid country code hint {labels[1]!r}")
        hint = labels[1].upper()

    name = " ".join(raw.replace("-", " ").replace("_", " ").split())
    if not name:
        raise FormatError(f"invalid place label {raw!r}")
    return PlaceQuery(name, hint)


def parse_fx(labels: Sequence[str]) -> FxQuery:
    """Brief: Parse ``[<amount>]<FROM>-<TO>``.

    Inputs:
      - labels: Parameter labels of the query.

    Outputs:
      - FxQuery(amount, source, target) with uppercase currency codes; the
        amount defaults to 1.

    Raises:
      - FormatError: When the text does not match the grammar.

    Example:
      >>> parse_fx(("99", "5jpy-inr"))
      FxQuery(amount=Decimal('99.5'), source='JPY', target='INR')
    """

    text = ".".join(labels).lower()
    match = _FX_QUERY.match(text)
    if not match:
        raise FormatError(f"invalid currency query {text!r}")

    amount_text, source, target = match.groups()
    try:
        amount = Decimal(amount_text) if amount_text else Decimal(1)
    except InvalidOperation as exc:
        raise FormatError(f"invalid amount {amount_text!r}") from exc
    return FxQuery(amount, source.upper(), target.upper())


def parse_no_params(labels: Sequence[str]) -> None:
    """Brief: Accept only an empty parameter list.

    Raises:
      - FormatError: When any parameter label is present.
    """

    if labels:
        raise FormatError("this zone takes no parameters")
