from __future__ import annotations


class Patron:
    """A registered library patron. Loans reference patrons by id only."""

    def __init__(self, patron_id: int, name: str) -> None:
        self._id = patron_id
        self.name = name

    @property
    def id(self) -> int:
        return self._id

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} (#{self._id})"

    def to_dict(self) -> dict:
        return {"id": self._id, "name": self.name}

    @staticmethod
    def from_dict(data: dict) -> "Patron":
        return Patron(patron_id=data["id"], name=data["name"])
