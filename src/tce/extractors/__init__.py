# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Declaration extractors for the test identity engine."""

from tce.extractors.javascript import JavaScriptExtractor, extract_declarations
from tce.extractors.profiles import PROFILES, FamilyProfile, detect_family
from tce.extractors.scanner import DeclarationScanner

__all__ = [
    "DeclarationScanner",
    "FamilyProfile",
    "JavaScriptExtractor",
    "PROFILES",
    "detect_family",
    "extract_declarations",
]
