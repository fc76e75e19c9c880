"""
Comic Creator — Data models.

Dataclasses for the generation pipeline:
PanelSpec (script output) → Panel (tracked generation state) → Project.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


# Panels per page the page grid supports
LAYOUT_OPTIONS = (1, 2, 4, 6)

# Output languages for titles, dialogue and captions
LANGUAGES = ("pl", "en")


def now_ms() -> int:
    """Epoch milliseconds — the timestamp unit used for stories and projects."""
    return int(time.time() * 1000)


def new_project_id() -> str:
    return uuid.uuid4().hex


# ============================================================
# Comic Styles: named presets for the artist prompt
# ============================================================

class ComicStyle(Enum):
    """Available comic styles."""

    MODERN = "modern-comic"
    MANGA = "manga"
    NOIR = "noir"
    WATERCOLOR = "watercolor"
    RETRO_POP = "retro-pop"
    RENDER_3D = "3d-render"
    CYBERPUNK = "cyberpunk"
    SKETCH = "sketch"
    DETECTIVE = "detective"
    NOSTALGIA = "nostalgia"


@dataclass(frozen=True)
class StylePreset:
    """Reference data for one style. Never mutated."""
    id: str
    name: str
    description: str
    cover_color: tuple = (30, 30, 30)      # Cover background tint
    accent_color: tuple = (234, 179, 8)    # Banner / author colour

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


STYLE_PRESETS = {
    ComicStyle.MODERN: StylePreset(
        id=ComicStyle.MODERN.value,
        name="Modern",
        description="Vivid colours, sharp lines, detailed backgrounds, superhero style.",
        cover_color=(59, 130, 246),
        accent_color=(239, 68, 68),
    ),
    ComicStyle.MANGA: StylePreset(
        id=ComicStyle.MANGA.value,
        name="Manga / Anime",
        description="Black and white or soft colours, expressive eyes, dynamic speed lines.",
        cover_color=(255, 255, 255),
        accent_color=(0, 0, 0),
    ),
    ComicStyle.NOIR: StylePreset(
        id=ComicStyle.NOIR.value,
        name="Film Noir",
        description="High-contrast black and white, dramatic shadows, dark atmosphere.",
        cover_color=(17, 24, 39),
        accent_color=(229, 231, 235),
    ),
    ComicStyle.WATERCOLOR: StylePreset(
        id=ComicStyle.WATERCOLOR.value,
        name="Watercolor",
        description="Soft edges, pastel colours, artistic fairy-tale style.",
        cover_color=(216, 180, 254),
        accent_color=(129, 140, 248),
    ),
    ComicStyle.RETRO_POP: StylePreset(
        id=ComicStyle.RETRO_POP.value,
        name="Retro Pop Art",
        description="Halftone patterns, bold primary colours, thick outlines, 1950s style.",
        cover_color=(250, 204, 21),
        accent_color=(220, 38, 38),
    ),
    ComicStyle.RENDER_3D: StylePreset(
        id=ComicStyle.RENDER_3D.value,
        name="3D Render",
        description="Pixar/Disney style, soft lighting, 3D render.",
        cover_color=(251, 146, 60),
        accent_color=(219, 39, 119),
    ),
    ComicStyle.CYBERPUNK: StylePreset(
        id=ComicStyle.CYBERPUNK.value,
        name="Cyberpunk",
        description="Neon lights, futuristic city, high-tech style, intense colours.",
        cover_color=(109, 40, 217),
        accent_color=(34, 211, 238),
    ),
    ComicStyle.SKETCH: StylePreset(
        id=ComicStyle.SKETCH.value,
        name="Pencil Sketch",
        description="Raw lines, graphite shading, hand-drawn look on paper.",
        cover_color=(231, 229, 228),
        accent_color=(120, 113, 108),
    ),
    ComicStyle.DETECTIVE: StylePreset(
        id=ComicStyle.DETECTIVE.value,
        name="Detective Comic",
        description="Dark urban landscapes, high contrast, noir style with technical detail.",
        cover_color=(31, 41, 55),
        accent_color=(107, 114, 128),
    ),
    ComicStyle.NOSTALGIA: StylePreset(
        id=ComicStyle.NOSTALGIA.value,
        name="Nostalgia Comic",
        description="Classic childhood stories, warm slightly faded colours. Ideal for tales of memories.",
        cover_color=(253, 224, 71),
        accent_color=(249, 115, 22),
    ),
}

DEFAULT_STYLE = STYLE_PRESETS[ComicStyle.MODERN]


def get_style(style=ComicStyle.MODERN) -> StylePreset:
    """Get a style preset by enum, preset or id string. Unknown ids raise ValueError."""
    if isinstance(style, StylePreset):
        return get_style(style.id)
    if isinstance(style, dict):
        style = style.get("id", "")
    try:
        return STYLE_PRESETS[ComicStyle(style)]
    except ValueError:
        raise ValueError(f"Unknown comic style: {style!r}") from None


# ============================================================
# Panels
# ============================================================

class PanelStatus(Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = (PanelStatus.COMPLETED, PanelStatus.ERROR)

# Fields a text edit may touch
EDITABLE_FIELDS = ("character", "dialogue", "caption")


@dataclass(frozen=True)
class PanelSpec:
    """One panel as written by the script generator."""
    panel_number: int
    visual_description: str    # English, written for the image model
    dialogue: Optional[str] = None
    caption: Optional[str] = None
    character: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PanelSpec":
        return cls(
            panel_number=int(data["panel_number"]),
            visual_description=str(data["visual_description"]),
            dialogue=data.get("dialogue") or None,
            caption=data.get("caption") or None,
            character=data.get("character") or None,
        )


@dataclass
class Panel:
    """A panel plus its generation state."""
    panel_number: int
    visual_description: str
    dialogue: Optional[str] = None
    caption: Optional[str] = None
    character: Optional[str] = None
    status: PanelStatus = PanelStatus.PENDING
    image_url: Optional[str] = None  # data:<mime>;base64,... once completed

    @classmethod
    def from_spec(cls, spec: PanelSpec) -> "Panel":
        return cls(
            panel_number=spec.panel_number,
            visual_description=spec.visual_description,
            dialogue=spec.dialogue,
            caption=spec.caption,
            character=spec.character,
        )

    def to_spec(self) -> PanelSpec:
        return PanelSpec(
            panel_number=self.panel_number,
            visual_description=self.visual_description,
            dialogue=self.dialogue,
            caption=self.caption,
            character=self.character,
        )

    def to_dict(self) -> dict:
        return {
            "panel_number": self.panel_number,
            "visual_description": self.visual_description,
            "dialogue": self.dialogue,
            "caption": self.caption,
            "character": self.character,
            "status": self.status.value,
            "image_url": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Panel":
        return cls(
            panel_number=int(data["panel_number"]),
            visual_description=data["visual_description"],
            dialogue=data.get("dialogue"),
            caption=data.get("caption"),
            character=data.get("character"),
            status=PanelStatus(data.get("status", "pending")),
            image_url=data.get("image_url"),
        )


@dataclass
class Story:
    """Script generator output: a title and ordered panel specs."""
    title: str
    panels: list[PanelSpec] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[int] = None


# ============================================================
# Project: the persisted unit
# ============================================================

@dataclass
class Project:
    """A story plus branding metadata. Keyed by id in the store."""
    id: str
    title: str
    panels: list[Panel] = field(default_factory=list)
    author: str = ""
    style: StylePreset = DEFAULT_STYLE
    logo: Optional[str] = None              # data URL
    style_reference: Optional[str] = None   # data URL
    layout: int = 1
    language: str = "pl"
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    @property
    def panel_count(self) -> int:
        return len(self.panels)

    def copy(self) -> "Project":
        """Snapshot copy — panels are copied, strings are shared."""
        return replace(self, panels=[replace(p) for p in self.panels])

    def to_dict(self) -> dict:
        """Serialize for the project store / JSON responses."""
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "panels": [p.to_dict() for p in self.panels],
            "style": self.style.to_dict(),
            "logo": self.logo,
            "style_reference": self.style_reference,
            "layout": self.layout,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            author=data.get("author", ""),
            created_at=int(data.get("created_at") or now_ms()),
            updated_at=int(data.get("updated_at") or data.get("created_at") or now_ms()),
            panels=[Panel.from_dict(p) for p in data.get("panels", [])],
            style=get_style(data.get("style") or DEFAULT_STYLE.id),
            logo=data.get("logo"),
            style_reference=data.get("style_reference"),
            layout=int(data.get("layout", 1)),
            language=data.get("language", "pl"),
        )


@dataclass
class ComicSettings:
    """Per-session generation settings and branding."""
    author: str = ""
    logo: Optional[str] = None
    style: StylePreset = DEFAULT_STYLE
    style_reference: Optional[str] = None
    layout: int = 1
    language: str = "pl"
    character_name: str = ""
    page_count: int = 1

    def to_dict(self) -> dict:
        return {
            "author": self.author,
            "logo": self.logo,
            "style": self.style.to_dict(),
            "style_reference": self.style_reference,
            "layout": self.layout,
            "language": self.language,
            "character_name": self.character_name,
            "page_count": self.page_count,
        }


# ============================================================
# Marketing assets: session only, never persisted
# ============================================================

class MarketingAssetType(Enum):
    INTRO_PAGE = "INTRO_PAGE"
    BOX_MOCKUP = "BOX_MOCKUP"


class AssetStatus(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class MarketingAsset:
    type: MarketingAssetType
    status: AssetStatus = AssetStatus.IDLE
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "status": self.status.value,
            "image_url": self.image_url,
        }


def idle_marketing_assets() -> dict:
    return {t: MarketingAsset(type=t) for t in MarketingAssetType}
