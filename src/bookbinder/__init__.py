"""Assemble paginated book PDFs from a manifest of PDF fragments."""
from .analyze import AnalysisResult, ContentItem, ContentType, PartAnalysis, Section, analyze_manifest
from .build import BuildResult, build_book, describe_plan
from .errors import BookBuildError, CacheError, FontError, ReadError, RenderError, ValidationError
from .manifest import Manifest, load_manifest, validate_manifest
from .pipeline import PartStatus, PipelineOptions, PipelineResult, build_with_parts

__version__ = "0.1.0"
