"""
app/parsers package marker.
"""

from app.parsers.apl_file_parser import FileFormat, ParsedFile, parse_apl_file

__all__ = [
    "FileFormat",
    "ParsedFile",
    "parse_apl_file",
]
