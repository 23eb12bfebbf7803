# Named lists of record fields that must be encrypted before leaving the client.
from __future__ import annotations

from typing import Dict, Iterable, Mapping, Sequence, Tuple, Union

PATIENT_FIELDS: Tuple[str, ...] = ("name", "idCard", "phone", "address")

INTERVIEW_FIELDS: Tuple[str, ...] = (
    "chiefComplaint",
    "presentIllness",
    "pastHistory",
    "personalHistory",
    "familyHistory",
    "physicalExamination",
    "diagnosisResult",
    "treatmentPlan",
    "prescription",
    "notes",
)

GENERIC_FIELDS: Tuple[str, ...] = PATIENT_FIELDS + INTERVIEW_FIELDS

DEFAULT_FIELD_SETS: Dict[str, Tuple[str, ...]] = {
    "generic": GENERIC_FIELDS,
    "interview": INTERVIEW_FIELDS,
    "patient": PATIENT_FIELDS,
}

FieldSetRef = Union[str, Iterable[str]]


class FieldSetRegistry:
    """Resolves a field-set name (or an explicit list) to field identifiers"""

    def __init__(self, overrides: Mapping[str, Sequence[str]] | None = None) -> None:
        self._sets: Dict[str, Tuple[str, ...]] = dict(DEFAULT_FIELD_SETS)
        for name, fields in (overrides or {}).items():
            self._sets[name] = tuple(dict.fromkeys(fields))

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._sets))

    def resolve(self, ref: FieldSetRef) -> Tuple[str, ...]:
        if isinstance(ref, str):
            try:
                return self._sets[ref]
            except KeyError:
                raise KeyError(f"Unknown sensitive field set: {ref}") from None
        return tuple(dict.fromkeys(ref))


__all__ = [
    "DEFAULT_FIELD_SETS",
    "FieldSetRef",
    "FieldSetRegistry",
    "GENERIC_FIELDS",
    "INTERVIEW_FIELDS",
    "PATIENT_FIELDS",
]
