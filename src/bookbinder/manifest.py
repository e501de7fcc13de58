"""Book manifest: the declarative list of PDFs that make up a book.

The manifest is JSON with camelCase keys::

    {
      "title": "Collected Essays",
      "author": "A. Writer",
      "outputPath": "~/Desktop/collected.pdf",
      "frontMatter": [{"type": "title", "pdf": "title.pdf"},
                      {"type": "toc", "placeholder": true}],
      "parts": [{"id": 1, "title": "Early", "pdf": "early.pdf",
                 "works": [{"id": 10, "title": "On Walking", "pdf": "walk.pdf"}]}],
      "backMatter": [{"type": "acknowledgements", "pdf": "ack.pdf"}]
    }

Exactly one of ``parts`` or ``works`` is given.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .book_config import DEFAULT_LAYOUT
from .errors import ValidationError

PLACEHOLDER_TOC = "toc"

PAGE_NUMBER_POSITIONS = ("centered", "outer", "none")
SUPPRESS_POLICIES = ("never", "section_starts", "essay_starts", "both")
HEADER_KINDS = ("book_title", "section_title", "essay_title", "none")


@dataclass
class Typography:
    header_font: str = DEFAULT_LAYOUT["typography"]["headerFont"]
    header_size: int = DEFAULT_LAYOUT["typography"]["headerSize"]
    page_number_font: str = DEFAULT_LAYOUT["typography"]["pageNumberFont"]
    page_number_size: int = DEFAULT_LAYOUT["typography"]["pageNumberSize"]

    @classmethod
    def from_dict(cls, data:dict|None) -> "Typography":
        data = data or {}
        default = cls()
        return cls(
            header_font=data.get("headerFont") or default.header_font,
            header_size=int(data.get("headerSize") or default.header_size),
            page_number_font=data.get("pageNumberFont") or default.page_number_font,
            page_number_size=int(data.get("pageNumberSize") or default.page_number_size),
        )

    def to_dict(self) -> dict:
        return {
            "headerFont": self.header_font,
            "headerSize": self.header_size,
            "pageNumberFont": self.page_number_font,
            "pageNumberSize": self.page_number_size,
        }


@dataclass
class FrontMatterItem:
    type: str
    pdf: str = ""
    placeholder: bool = False

    @property
    def is_toc_placeholder(self) -> bool:
        return self.placeholder and self.type == PLACEHOLDER_TOC


@dataclass
class BackMatterItem:
    type: str
    pdf: str = ""


@dataclass
class Work:
    id: int
    title: str
    pdf: str = ""


@dataclass
class Part:
    id: int
    title: str
    pdf: str = ""
    works: list[Work] = field(default_factory=list)
    no_divider: bool = False

    @property
    def has_divider(self) -> bool:
        return bool(self.pdf) and not self.no_divider


@dataclass
class Manifest:
    title: str
    output_path: str
    author: str = ""
    template_path: str = ""
    typography: Typography = field(default_factory=Typography)
    page_number_position: str = "centered"
    suppress_page_numbers: str = "both"
    works_start_recto: bool = True
    verso_header: str = "book_title"
    recto_header: str = "essay_title"
    front_matter: list[FrontMatterItem] = field(default_factory=list)
    parts: list[Part] = field(default_factory=list)
    works: list[Work] = field(default_factory=list)
    back_matter: list[BackMatterItem] = field(default_factory=list)

    def all_works(self) -> list[Work]:
        if self.works:
            return list(self.works)
        return [w for part in self.parts for w in part.works]

    def has_parts(self) -> bool:
        return len(self.parts) > 0

    @classmethod
    def from_dict(cls, data:dict) -> "Manifest":
        """Build a manifest from its JSON form. Structure only, no validation."""
        if not isinstance(data, dict):
            raise ValidationError("manifest: top level must be a JSON object")
        try:
            return cls(
                title=data.get("title") or "",
                author=data.get("author") or "",
                output_path=data.get("outputPath") or "",
                template_path=data.get("templatePath") or "",
                typography=Typography.from_dict(data.get("typography")),
                page_number_position=data.get("pageNumberPosition") or "centered",
                suppress_page_numbers=data.get("suppressPageNumbers") or "both",
                works_start_recto=bool(data.get("worksStartRecto", True)),
                verso_header=data.get("versoHeader") or "book_title",
                recto_header=data.get("rectoHeader") or "essay_title",
                front_matter=[
                    FrontMatterItem(
                        type=fm.get("type") or "",
                        pdf=fm.get("pdf") or "",
                        placeholder=bool(fm.get("placeholder", False)),
                    )
                    for fm in data.get("frontMatter") or []
                ],
                parts=[
                    Part(
                        id=p.get("id", idx),
                        title=p.get("title") or "",
                        pdf=p.get("pdf") or "",
                        works=[_work_from_dict(w) for w in p.get("works") or []],
                        no_divider=bool(p.get("noDivider", False)),
                    )
                    for idx, p in enumerate(data.get("parts") or [])
                ],
                works=[_work_from_dict(w) for w in data.get("works") or []],
                back_matter=[
                    BackMatterItem(type=bm.get("type") or "", pdf=bm.get("pdf") or "")
                    for bm in data.get("backMatter") or []
                ],
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ValidationError(f"manifest: malformed structure: {e}") from e

    def to_dict(self) -> dict:
        data = {
            "title": self.title,
            "author": self.author,
            "outputPath": self.output_path,
            "templatePath": self.template_path,
            "typography": self.typography.to_dict(),
            "pageNumberPosition": self.page_number_position,
            "suppressPageNumbers": self.suppress_page_numbers,
            "worksStartRecto": self.works_start_recto,
            "versoHeader": self.verso_header,
            "rectoHeader": self.recto_header,
            "frontMatter": [
                {"type": fm.type, "pdf": fm.pdf, "placeholder": fm.placeholder}
                for fm in self.front_matter
            ],
            "backMatter": [{"type": bm.type, "pdf": bm.pdf} for bm in self.back_matter],
        }
        if self.parts:
            data["parts"] = [
                {
                    "id": p.id,
                    "title": p.title,
                    "pdf": p.pdf,
                    "noDivider": p.no_divider,
                    "works": [{"id": w.id, "title": w.title, "pdf": w.pdf} for w in p.works],
                }
                for p in self.parts
            ]
        else:
            data["works"] = [{"id": w.id, "title": w.title, "pdf": w.pdf} for w in self.works]
        return data


def _work_from_dict(data:dict) -> Work:
    return Work(id=data.get("id", 0), title=data.get("title") or "", pdf=data.get("pdf") or "")


def expand_path(path:str) -> str:
    if path.startswith("~/"):
        return os.path.join(os.path.expanduser("~"), path[2:])
    return path


def load_manifest(path) -> Manifest:
    """Read, parse and validate a manifest file."""
    path = Path(path)
    logging.info(f"Loading manifest: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ValidationError(f"failed to read manifest: {e}") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"failed to parse manifest: {e}") from e

    manifest = Manifest.from_dict(data)
    validate_manifest(manifest)
    logging.info(
        f"Manifest '{manifest.title}': {len(manifest.front_matter)} front matter, "
        f"{len(manifest.parts)} parts, {len(manifest.all_works())} works, "
        f"{len(manifest.back_matter)} back matter"
    )
    return manifest


def validate_manifest(m:Manifest) -> None:
    """Raise ValidationError naming the first offending field. Never mutates ``m``."""
    if not m.title:
        raise ValidationError("manifest: title is required")
    if not m.output_path:
        raise ValidationError("manifest: outputPath is required")

    if not m.parts and not m.works:
        raise ValidationError("manifest: either parts or works must be provided")
    if m.parts and m.works:
        raise ValidationError("manifest: cannot specify both parts and works at top level")

    _check_choice("pageNumberPosition", m.page_number_position, PAGE_NUMBER_POSITIONS)
    _check_choice("suppressPageNumbers", m.suppress_page_numbers, SUPPRESS_POLICIES)
    _check_choice("versoHeader", m.verso_header, HEADER_KINDS)
    _check_choice("rectoHeader", m.recto_header, HEADER_KINDS)

    for i, fm in enumerate(m.front_matter):
        if not fm.type:
            raise ValidationError(f"manifest: frontMatter[{i}] type is required")
        if fm.is_toc_placeholder:
            continue
        if fm.placeholder:
            raise ValidationError(f"manifest: frontMatter[{i}] only the toc can be a placeholder (got '{fm.type}')")
        if not fm.pdf:
            raise ValidationError(f"manifest: frontMatter[{i}] pdf is required unless placeholder")
        _check_pdf(f"frontMatter[{i}]", fm.pdf)

    for i, part in enumerate(m.parts):
        if not part.title:
            raise ValidationError(f"manifest: parts[{i}] title is required")
        if part.pdf and not part.no_divider:
            _check_pdf(f"parts[{i}]", part.pdf)
        for j, work in enumerate(part.works):
            _check_work(f"parts[{i}].works[{j}]", work)

    for i, work in enumerate(m.works):
        _check_work(f"works[{i}]", work)

    for i, bm in enumerate(m.back_matter):
        if not bm.type:
            raise ValidationError(f"manifest: backMatter[{i}] type is required")
        _check_pdf(f"backMatter[{i}]", bm.pdf)


def _check_choice(name, value, allowed):
    if value not in allowed:
        raise ValidationError(f"manifest: {name} must be one of {', '.join(allowed)} (got '{value}')")


def _check_work(where:str, w:Work):
    if not w.title:
        raise ValidationError(f"manifest: {where}: title is required")
    if not w.pdf:
        raise ValidationError(f"manifest: {where}: pdf is required")
    _check_pdf(where, w.pdf)


def _check_pdf(where:str, pdf:str):
    if not pdf:
        raise ValidationError(f"manifest: {where}: pdf is required")
    if not os.path.exists(expand_path(pdf)):
        raise ValidationError(f"manifest: {where}: pdf not found: {pdf}")
