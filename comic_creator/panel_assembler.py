"""
Comic Creator — Panel Assembler.

Renders the comic into printable A4 pages and packs the exports:
- Cover page (logo, title, special-edition banner, author)
- Grid pages (1, 2, 4 or 6 panels) with speech bubbles and caption boxes
- Multi-page PDF (cover + pages, A4 portrait)
- ZIP pack (full-page JPEGs + raw panel artwork PNGs)

Uses Pillow for all image manipulation.
"""

import io
import logging
import math
import os
import textwrap
import zipfile
from pathlib import Path
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from comic_creator.data_urls import parse_data_url, to_data_url
from comic_creator.errors import ExportError
from comic_creator.models import Panel, PanelStatus, Project
from comic_creator.translations import t

logger = logging.getLogger(__name__)

# Layout constants
PAGE_WIDTH = 2480       # A4 at 300 DPI (portrait)
PAGE_HEIGHT = 3508
PAGE_DPI = 300
PANEL_GUTTER = 40       # Space between panels
PAGE_MARGIN = 80        # Page edge margin
FOOTER_HEIGHT = 100     # Page number strip
BORDER_WIDTH = 6        # Panel border thickness
BORDER_COLOR = (0, 0, 0)
BACKGROUND_COLOR = (255, 255, 255)
PLACEHOLDER_COLOR = (228, 228, 231)

# (columns, rows) per panels-per-page
LAYOUT_GRIDS = {
    1: (1, 1),
    2: (1, 2),
    4: (2, 2),
    6: (2, 3),
}

# Speech bubble styling
BUBBLE_FILL = (255, 255, 255, 235)
BUBBLE_OUTLINE = (0, 0, 0)
BUBBLE_OUTLINE_WIDTH = 4
BUBBLE_PADDING = 20
BUBBLE_RADIUS = 28
BUBBLE_TAIL_SIZE = 24

# Caption box styling
CAPTION_FILL = (254, 240, 138)
CAPTION_TEXT_COLOR = (0, 0, 0)
CAPTION_PADDING = 16

# Cover
COVER_PREVIEW_WIDTH = 1240   # Cover sent to the image model as box art
JPEG_QUALITY = 90

FONTS_DIR = Path(__file__).parent / "assets" / "fonts"


def group_pages(panels: list[Panel], layout: int) -> list[list[Panel]]:
    """Split panels into pages of `layout` panels, in order."""
    if layout < 1:
        raise ValueError("Layout must be positive")
    return [panels[i:i + layout] for i in range(0, len(panels), layout)]


def decode_image(data_url: str) -> Image.Image:
    """Data URL → loaded RGB Pillow image."""
    _, data = parse_data_url(data_url)
    img = Image.open(io.BytesIO(data))
    img.load()
    return img.convert("RGB")


def tint(color: tuple, amount: float) -> tuple:
    """Blend a colour towards white (amount = share of the colour kept)."""
    return tuple(int(255 - (255 - c) * amount) for c in color)


class PanelAssembler:
    """Renders pages and packs PDF / ZIP exports."""

    def __init__(self):
        self._fonts: dict[tuple, ImageFont.ImageFont] = {}

    def _load_font(self, preferred_name: str, size: int):
        """Load a font, trying bundled → system → default."""
        key = (preferred_name, size)
        if key in self._fonts:
            return self._fonts[key]

        font = None
        for ext in (".ttf", ".otf"):
            bundled = FONTS_DIR / f"{preferred_name}{ext}"
            if bundled.exists():
                font = ImageFont.truetype(str(bundled), size)
                break

        if font is None:
            system_fonts = {
                "Bangers": ["Bangers-Regular.ttf", "Bangers.ttf"],
                "ComicNeue": ["ComicNeue-Bold.ttf", "ComicNeue-Regular.ttf", "comicbd.ttf"],
            }
            font_dirs = [
                Path(os.environ.get("WINDIR", "C:\\Windows")) / "Fonts",
                Path("/usr/share/fonts"),
                Path("/usr/share/fonts/truetype"),
                Path("/usr/share/fonts/truetype/dejavu"),
                Path.home() / ".local" / "share" / "fonts",
            ]
            candidates = system_fonts.get(preferred_name, [preferred_name + ".ttf"])
            candidates = candidates + ["DejaVuSans-Bold.ttf"]
            for font_name in candidates:
                for font_dir in font_dirs:
                    font_path = font_dir / font_name
                    if font_path.exists():
                        font = ImageFont.truetype(str(font_path), size)
                        break
                if font is not None:
                    break

        if font is None:
            logger.debug(f"Font '{preferred_name}' not found — using Pillow default")
            font = ImageFont.load_default(size=size)

        self._fonts[key] = font
        return font

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_cover(self, project: Project, language: str = "pl") -> Image.Image:
        """Render the A4 cover page."""
        style = project.style
        page = Image.new("RGB", (PAGE_WIDTH, PAGE_HEIGHT), tint(style.cover_color, 0.12))
        draw = ImageDraw.Draw(page)

        # Logo (or placeholder disc)
        logo_box = 360
        logo_top = PAGE_MARGIN * 2
        logo = None
        if project.logo:
            try:
                logo = decode_image(project.logo)
            except (OSError, ValueError) as e:
                logger.warning(f"Logo could not be decoded: {e}")
        if logo is not None:
            logo.thumbnail((logo_box * 2, logo_box))
            page.paste(logo, ((PAGE_WIDTH - logo.width) // 2, logo_top))
        else:
            left = (PAGE_WIDTH - logo_box) // 2
            draw.ellipse([left, logo_top, left + logo_box, logo_top + logo_box], fill=(24, 24, 27))
            draw.text(
                (PAGE_WIDTH // 2, logo_top + logo_box // 2), "LOGO",
                fill=(255, 255, 255), font=self._load_font("Bangers", 80), anchor="mm",
            )

        # Title box
        title = project.title or t(language, "title_placeholder")
        title_font = self._load_font("Bangers", 200)
        wrapped = textwrap.fill(title.upper(), width=14)
        bbox = draw.multiline_textbbox((0, 0), wrapped, font=title_font, align="center")
        text_h = bbox[3] - bbox[1]
        box_w = PAGE_WIDTH - 4 * PAGE_MARGIN
        box_h = text_h + 240
        box_x = 2 * PAGE_MARGIN
        box_y = PAGE_HEIGHT // 2 - box_h // 2 - 200
        draw.rectangle([box_x + 40, box_y + 40, box_x + box_w + 40, box_y + box_h + 40], fill=(0, 0, 0))
        draw.rectangle([box_x, box_y, box_x + box_w, box_y + box_h], fill=(255, 255, 255),
                       outline=(0, 0, 0), width=16)
        draw.multiline_text(
            (PAGE_WIDTH // 2, box_y + box_h // 2), wrapped,
            fill=(0, 0, 0), font=title_font, anchor="mm", align="center",
        )

        # Special edition banner
        banner_font = self._load_font("Bangers", 90)
        banner = t(language, "special_edition").upper()
        banner_y = box_y + box_h + 200
        bb = draw.textbbox((0, 0), banner, font=banner_font)
        banner_w = bb[2] - bb[0] + 120
        draw.rectangle(
            [(PAGE_WIDTH - banner_w) // 2, banner_y, (PAGE_WIDTH + banner_w) // 2, banner_y + 160],
            fill=(24, 24, 27),
        )
        draw.text((PAGE_WIDTH // 2, banner_y + 80), banner, fill=(255, 255, 255),
                  font=banner_font, anchor="mm")

        # Author footer
        footer_h = 420
        draw.rectangle([0, PAGE_HEIGHT - footer_h, PAGE_WIDTH, PAGE_HEIGHT], fill=(24, 24, 27))
        draw.text(
            (PAGE_MARGIN * 2, PAGE_HEIGHT - footer_h + 110), t(language, "script_art").upper(),
            fill=(161, 161, 170), font=self._load_font("ComicNeue", 56),
        )
        draw.text(
            (PAGE_MARGIN * 2, PAGE_HEIGHT - footer_h + 200),
            project.author or t(language, "author_unknown"),
            fill=style.accent_color, font=self._load_font("Bangers", 120),
        )
        return page

    def render_page(
        self,
        panels: list[Panel],
        layout: int,
        page_number: int,
        language: str = "pl",
    ) -> Image.Image:
        """Render a single comic book page."""
        page = Image.new("RGB", (PAGE_WIDTH, PAGE_HEIGHT), BACKGROUND_COLOR)
        draw = ImageDraw.Draw(page)

        grid_cols, grid_rows = LAYOUT_GRIDS.get(layout, (2, math.ceil(layout / 2)))

        # Calculate panel dimensions
        available_w = PAGE_WIDTH - 2 * PAGE_MARGIN - (grid_cols - 1) * PANEL_GUTTER
        available_h = (PAGE_HEIGHT - 2 * PAGE_MARGIN - FOOTER_HEIGHT
                       - (grid_rows - 1) * PANEL_GUTTER)
        panel_w = available_w // grid_cols
        panel_h = available_h // grid_rows

        for i, panel in enumerate(panels):
            col = i % grid_cols
            row = i // grid_cols

            x = PAGE_MARGIN + col * (panel_w + PANEL_GUTTER)
            y = PAGE_MARGIN + row * (panel_h + PANEL_GUTTER)

            draw.rectangle(
                [x - BORDER_WIDTH, y - BORDER_WIDTH,
                 x + panel_w + BORDER_WIDTH, y + panel_h + BORDER_WIDTH],
                fill=BORDER_COLOR,
            )

            panel_img = None
            if panel.status == PanelStatus.COMPLETED and panel.image_url:
                try:
                    panel_img = decode_image(panel.image_url)
                except (OSError, ValueError) as e:
                    logger.warning(f"Panel {panel.panel_number} image unreadable: {e}")

            if panel_img is not None:
                page.paste(self._fit_image(panel_img, panel_w, panel_h), (x, y))
            else:
                # Placeholder for missing images
                draw.rectangle([x, y, x + panel_w, y + panel_h], fill=PLACEHOLDER_COLOR)
                draw.text(
                    (x + panel_w // 2, y + panel_h // 2),
                    f"{panel.panel_number}",
                    fill=(113, 113, 122),
                    font=self._load_font("Bangers", 120),
                    anchor="mm",
                )

            if panel.dialogue:
                text = f"{panel.character}: {panel.dialogue}" if panel.character else panel.dialogue
                page = self._draw_speech_bubble(
                    page, text,
                    x + BUBBLE_PADDING, y + BUBBLE_PADDING,
                    max_width=panel_w - 2 * BUBBLE_PADDING,
                )
                draw = ImageDraw.Draw(page)

            if panel.caption:
                self._draw_caption_box(draw, panel.caption, x, y + panel_h, width=panel_w)

        # Page number
        draw.text(
            (PAGE_WIDTH // 2, PAGE_HEIGHT - PAGE_MARGIN - FOOTER_HEIGHT // 2),
            f"{t(language, 'page')} {page_number}",
            fill=(82, 82, 91), font=self._load_font("ComicNeue", 48), anchor="mm",
        )
        return page

    def render_pages(self, project: Project, language: str = "pl") -> list[Image.Image]:
        """Cover first, then every grid page."""
        images = [self.render_cover(project, language)]
        for page_num, page_panels in enumerate(group_pages(project.panels, project.layout), 1):
            images.append(self.render_page(page_panels, project.layout, page_num, language))
        return images

    def render_cover_data_url(self, project: Project, language: str = "pl") -> str:
        """Cover as a JPEG data URL (box-mockup art)."""
        try:
            cover = self.render_cover(project, language)
            cover.thumbnail((COVER_PREVIEW_WIDTH, PAGE_HEIGHT))
            buffer = io.BytesIO()
            cover.save(buffer, format="JPEG", quality=JPEG_QUALITY)
        except (OSError, ValueError) as e:
            raise ExportError(f"Cover rendering failed: {e}") from e
        return to_data_url(buffer.getvalue(), "image/jpeg")

    def _fit_image(self, img: Image.Image, target_w: int, target_h: int) -> Image.Image:
        """Resize and crop image to fit target dimensions (cover mode)."""
        scale = max(target_w / img.width, target_h / img.height)

        new_w = max(target_w, int(img.width * scale))
        new_h = max(target_h, int(img.height * scale))
        img = img.resize((new_w, new_h), Image.Resampling.LANCZOS)

        left = (new_w - target_w) // 2
        top = (new_h - target_h) // 2
        return img.crop((left, top, left + target_w, top + target_h))

    def _draw_speech_bubble(
        self,
        page: Image.Image,
        text: str,
        x: int,
        y: int,
        max_width: int,
    ) -> Image.Image:
        """Draw a speech bubble with text in the panel's top-left. Returns the page."""
        font = self._load_font("ComicNeue", 44)
        draw = ImageDraw.Draw(page)

        chars_per_line = max(8, (max_width - 2 * BUBBLE_PADDING) // 24)
        wrapped = textwrap.fill(text, width=min(chars_per_line, 36))

        bbox = draw.multiline_textbbox((0, 0), wrapped, font=font)
        bw = min(bbox[2] - bbox[0] + 2 * BUBBLE_PADDING, max_width)
        bh = bbox[3] - bbox[1] + 2 * BUBBLE_PADDING

        # Draw bubble on overlay for transparency
        overlay = Image.new("RGBA", page.size, (0, 0, 0, 0))
        overlay_draw = ImageDraw.Draw(overlay)
        overlay_draw.rounded_rectangle(
            [x, y, x + bw, y + bh],
            radius=BUBBLE_RADIUS,
            fill=BUBBLE_FILL,
            outline=BUBBLE_OUTLINE,
            width=BUBBLE_OUTLINE_WIDTH,
        )

        # Tail (triangle pointing down-left)
        tail_x = x + bw // 4
        tail_y = y + bh
        overlay_draw.polygon(
            [
                (tail_x, tail_y - 2),
                (tail_x + BUBBLE_TAIL_SIZE, tail_y - 2),
                (tail_x - 5, tail_y + BUBBLE_TAIL_SIZE),
            ],
            fill=BUBBLE_FILL,
            outline=BUBBLE_OUTLINE,
            width=BUBBLE_OUTLINE_WIDTH,
        )
        overlay_draw.rectangle(
            [tail_x - 1, tail_y - BUBBLE_OUTLINE_WIDTH - 1,
             tail_x + BUBBLE_TAIL_SIZE + 1, tail_y + 1],
            fill=BUBBLE_FILL,
        )

        page = Image.alpha_composite(page.convert("RGBA"), overlay).convert("RGB")
        ImageDraw.Draw(page).multiline_text(
            (x + BUBBLE_PADDING, y + BUBBLE_PADDING - bbox[1]),
            wrapped,
            fill=(0, 0, 0),
            font=font,
        )
        return page

    def _draw_caption_box(
        self,
        draw: ImageDraw.ImageDraw,
        text: str,
        x: int,
        bottom: int,
        width: int,
    ):
        """Narration caption box anchored to the panel's bottom edge."""
        font = self._load_font("ComicNeue", 40)
        wrapped = textwrap.fill(text, width=max(10, width // 22))

        bbox = draw.multiline_textbbox((0, 0), wrapped, font=font)
        box_h = bbox[3] - bbox[1] + 2 * CAPTION_PADDING
        top = bottom - box_h

        draw.rectangle([x, top, x + width, bottom], fill=CAPTION_FILL, outline=(0, 0, 0), width=3)
        draw.multiline_text(
            (x + CAPTION_PADDING, top + CAPTION_PADDING - bbox[1]),
            wrapped,
            fill=CAPTION_TEXT_COLOR,
            font=font,
        )

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    def export_pdf(self, project: Project, output_path: str, language: str = "pl") -> str:
        """
        Write cover + pages as an A4 portrait PDF.

        Raises:
            ExportError: nothing to export, or rendering/writing failed
        """
        if not project.panels:
            raise ExportError("No panels to create PDF from")

        path = Path(output_path)
        try:
            images = self.render_pages(project, language)
            path.parent.mkdir(parents=True, exist_ok=True)
            images[0].save(
                path,
                format="PDF",
                save_all=True,
                append_images=images[1:],
                resolution=PAGE_DPI,
            )
        except (OSError, ValueError) as e:
            self._remove_partial(path)
            raise ExportError(f"PDF export failed: {e}") from e

        logger.info(f"PDF generated: {path} ({len(images)} pages)")
        return str(path)

    def export_zip(self, project: Project, output_path: str, language: str = "pl") -> str:
        """
        Write a ZIP with full_pages/*.jpg and raw_artwork/panel_N.png.

        Raises:
            ExportError: nothing to export, or rendering/writing failed
        """
        if not project.panels:
            raise ExportError("No panels to pack")

        path = Path(output_path)
        try:
            images = self.render_pages(project, language)
            path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for index, img in enumerate(images):
                    name = "cover.jpg" if index == 0 else f"page_{index}.jpg"
                    zf.writestr(f"full_pages/{name}", self._jpeg_bytes(img))

                raw_count = 0
                for panel in project.panels:
                    if panel.status != PanelStatus.COMPLETED or not panel.image_url:
                        continue
                    png = self._png_bytes(panel.image_url)
                    if png is not None:
                        zf.writestr(f"raw_artwork/panel_{panel.panel_number}.png", png)
                        raw_count += 1
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            self._remove_partial(path)
            raise ExportError(f"ZIP export failed: {e}") from e

        logger.info(f"ZIP generated: {path} ({len(images)} pages, {raw_count} raw panels)")
        return str(path)

    def _remove_partial(self, path: Path):
        if path.is_file():
            path.unlink()

    def _jpeg_bytes(self, img: Image.Image) -> bytes:
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
        return buffer.getvalue()

    def _png_bytes(self, data_url: str) -> Optional[bytes]:
        """Raw PNG bytes for a panel image, converting other formats."""
        try:
            mime_type, data = parse_data_url(data_url)
            if mime_type == "image/png":
                return data
            img = Image.open(io.BytesIO(data))
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
            return buffer.getvalue()
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable panel artwork: {e}")
            return None
