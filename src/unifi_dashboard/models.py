"""Sites and devices as the dashboard sees them."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Site:
    """A controller site. ``id`` is the internal name used in API paths."""

    id: str
    description: str

    @classmethod
    def from_api(cls, raw: dict) -> "Site":
        name = raw.get("name", "")
        return cls(id=name, description=raw.get("desc") or name)


@dataclass(frozen=True)
class Device:
    mac: str
    name: str
    site: str
    board_rev: str | None = None
    model: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.mac

    @classmethod
    def from_api(cls, raw: dict, site: Site) -> "Device":
        board_rev = raw.get("board_rev")
        return cls(
            mac=str(raw.get("mac", "")).lower(),
            name=raw.get("name", "") or "",
            site=site.id,
            board_rev=str(board_rev) if board_rev not in (None, "") else None,
            model=raw.get("model"),
        )


def sort_sites(sites: list[Site]) -> list[Site]:
    return sorted(sites, key=lambda s: s.description.lower())
