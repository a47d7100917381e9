"""Split source files into code blocks.

Python is split with the ``ast`` module, Markdown by headings, and languages
with well-known declaration keywords by boundary lines. Everything else (and
any Python file that fails to parse) is cut into fixed line windows.

Coverage policy: regions partition the file with no overlap. Leading and
trailing blank lines of a region are trimmed, so whitespace-only regions
produce no block, but every non-blank line lands in exactly one region.
A region larger than ``max_block_lines``/``max_block_chars`` is cut into
windows; a trailing window shorter than ``min_block_lines`` is merged into
the one before it. A single line longer than ``max_block_chars`` still forms
one window. Identical segments within one file are emitted once, first
occurrence wins.
"""

import ast
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from ..config import ParserConfig
from ..errors import ParseError
from ..models import CodeBlock
from .scanner import language_for

log = logging.getLogger("repoindex.parser")

_FUNC_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)

# Languages split on declaration boundary lines
_BOUNDARY_LANGUAGES = {
    "go", "javascript", "typescript", "rust",
    "java", "kotlin", "csharp", "scala",
    "c", "cpp", "ruby", "php", "swift",
}

# (block type, pattern) tried in order against the first meaningful line
_CLASSIFIERS: list[tuple[str, re.Pattern]] = [
    ("method", re.compile(r"^func\s+\([^)]*\)\s*(\w+)")),
    ("function", re.compile(r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*([A-Za-z_$][\w$]*)")),
    ("function", re.compile(r"^(?:async\s+)?def\s+(?:self\.)?(\w+[?!=]?)")),
    ("function", re.compile(r"^func\s+(\w+)")),
    ("function", re.compile(r"^(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+(\w+)")),
    ("function", re.compile(
        r"^(?:export\s+)?(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*=\s*(?:async\s*)?"
        r"(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*=>"
    )),
    ("function", re.compile(r"^(?:(?:public|private|protected|internal|override|suspend|inline)\s+)*fun\s+"
                            r"(?:<[^>]*>\s*)?(?:[\w.]+\.)?(\w+)")),
    ("function", re.compile(r"^(?:(?:public|private|protected|static|final|abstract)\s+)*function\s+(\w+)")),
    ("interface", re.compile(r"^(?:export\s+)?(?:(?:public|private|protected|internal)\s+)?interface\s+(\w+)")),
    ("interface", re.compile(r"^(?:pub\s+)?trait\s+(\w+)")),
    ("interface", re.compile(r"^(?:public\s+)?protocol\s+(\w+)")),
    ("class", re.compile(
        r"^(?:export\s+)?(?:default\s+)?(?:(?:public|private|protected|internal|abstract|sealed|static|final|"
        r"data|open|partial)\s+)*class\s+(\w+)"
    )),
    ("class", re.compile(r"^(?:pub\s+)?(?:struct|impl(?:<[^>]*>)?)\s+(\w+)")),
    ("class", re.compile(r"^module\s+(\w+)")),
    ("type", re.compile(r"^(?:export\s+)?(?:declare\s+)?type\s+(\w+)")),
    ("type", re.compile(r"^(?:export\s+)?(?:pub\s+)?(?:const\s+)?enum\s+(\w+)")),
    ("method", re.compile(
        r"^(?:(?:public|private|protected|static|final|abstract|synchronized|override|internal|virtual|async)\s+)+"
        r"[\w<>\[\],.?]*\s*\b(\w+)\s*\("
    )),
]

_IMPORT_PREFIXES = ("import ", "from ", "#include", "using ", "use ", "require", "package ")
_SKIP_PREFIXES = ("//", "#", "/*", "*", "@", "--")
_HEADING = re.compile(r"^#{1,6}\s+(.*?)\s*#*\s*$")


def content_hash(data: Union[str, bytes]) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def classify_block(text: str) -> tuple[str, Optional[str]]:
    """Best-effort block type and identifier from the block's text."""
    code = [ln.strip() for ln in text.split("\n") if ln.strip()]
    if code and all(ln.startswith(_IMPORT_PREFIXES) for ln in code):
        return "import", None
    for line in code:
        if line.startswith(_SKIP_PREFIXES) and not line.startswith("#include"):
            continue
        for block_type, pattern in _CLASSIFIERS:
            m = pattern.match(line)
            if m:
                return block_type, m.group(1)
        break
    return "block", None


def _is_boundary_line(line: str, language: str) -> bool:
    """Heuristic: is this line a natural split point?"""
    stripped = line.strip()
    if not stripped or stripped.startswith(("#", "//", "/*", "*")):
        return False

    if language == "go":
        return stripped.startswith(("func ", "type "))
    if language in ("javascript", "typescript"):
        return stripped.startswith((
            "function ", "export ", "class ", "const ", "async function",
            "interface ", "type ", "describe(", "it(", "test(",
        ))
    if language == "rust":
        return stripped.startswith((
            "fn ", "pub fn ", "pub(crate) fn ", "async fn ", "pub async fn ",
            "impl ", "impl<", "struct ", "pub struct ", "enum ", "pub enum ",
            "mod ", "pub mod ", "trait ", "pub trait ",
        ))
    if language in ("java", "kotlin", "csharp", "scala"):
        return stripped.startswith((
            "public ", "private ", "protected ", "internal ", "class ", "interface ",
            "fun ", "data class ", "object ", "override ", "def ",
        ))
    if language in ("c", "cpp"):
        return ("(" in stripped and ")" in stripped and "{" in stripped
                and not stripped.startswith(("if", "for", "while", "switch", "else", "}")))
    if language == "ruby":
        return stripped.startswith(("def ", "class ", "module "))
    if language == "php":
        return stripped.startswith((
            "function ", "class ", "interface ", "trait ",
            "public function", "private function", "protected function", "abstract ", "final ",
        ))
    if language == "swift":
        return stripped.startswith((
            "func ", "class ", "struct ", "enum ", "protocol ", "extension ",
            "public ", "private ", "internal ", "fileprivate ",
        ))
    return False


@dataclass
class _Region:
    start: int
    end: int
    type: Optional[str] = None
    identifier: Optional[str] = None


class CodeParser:
    """Deterministic file-to-blocks splitter."""

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()

    # ── Public API ────────────────────────────────────────────

    def parse_file(self, file_path: str, raw: bytes, file_hash: Optional[str] = None) -> tuple[str, list[CodeBlock]]:
        """Hash and decode raw file bytes, then parse. Returns (file_hash, blocks)."""
        file_hash = file_hash or content_hash(raw)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(file_path, f"not valid UTF-8 ({e.reason} at byte {e.start})") from e
        if "\x00" in text:
            raise ParseError(file_path, "binary content")
        return file_hash, self.parse(file_path, text, file_hash)

    def parse(self, file_path: str, content: str, file_hash: str) -> list[CodeBlock]:
        if not content.strip():
            return []
        lines = content.split("\n")
        language = language_for(file_path)

        blocks: list[CodeBlock] = []
        seen: set[str] = set()
        for region in self._regions(lines, content, language, file_path):
            for start, end in self._windows(lines, region.start, region.end):
                text = "\n".join(lines[start - 1:end])
                segment_hash = content_hash(text)
                if segment_hash in seen:
                    continue
                seen.add(segment_hash)
                block_type, identifier = region.type, region.identifier
                if block_type is None:
                    block_type, identifier = classify_block(text)
                blocks.append(CodeBlock(
                    file_path=file_path,
                    identifier=identifier,
                    type=block_type,
                    start_line=start,
                    end_line=end,
                    content=text,
                    file_hash=file_hash,
                    segment_hash=segment_hash,
                ))
        return blocks

    # ── Region selection ──────────────────────────────────────

    def _regions(self, lines: list[str], content: str, language: str, file_path: str) -> list[_Region]:
        if language == "python":
            try:
                return self._python_regions(lines, content)
            except (SyntaxError, ValueError, RecursionError) as e:
                log.debug("Python parse failed for %s, using line windows: %s", file_path, e)
        elif language == "markdown":
            return self._markdown_regions(lines)
        elif language in _BOUNDARY_LANGUAGES:
            return self._boundary_regions(lines, language)
        return [_Region(1, len(lines))]

    @staticmethod
    def _node_start(node: ast.AST) -> int:
        decorators = getattr(node, "decorator_list", None) or []
        return min([node.lineno] + [d.lineno for d in decorators])

    def _oversized(self, lines: list[str], start: int, end: int) -> bool:
        if end - start + 1 > self.config.max_block_lines:
            return True
        return sum(len(ln) + 1 for ln in lines[start - 1:end]) - 1 > self.config.max_block_chars

    def _python_regions(self, lines: list[str], content: str) -> list[_Region]:
        # ast counts a lone \r as a line break; str.split("\n") does not
        if "\r" in content.replace("\r\n", ""):
            raise ValueError("bare carriage returns")
        tree = ast.parse(content)

        regions: list[_Region] = []
        prev_end = 0
        group: list[ast.stmt] = []

        def flush_group():
            nonlocal prev_end
            if not group:
                return
            end = group[-1].end_lineno
            is_import = all(isinstance(n, (ast.Import, ast.ImportFrom)) for n in group)
            regions.append(_Region(prev_end + 1, end, "import" if is_import else None))
            prev_end = end
            group.clear()

        for node in tree.body:
            if isinstance(node, _FUNC_NODES + (ast.ClassDef,)):
                flush_group()
                start, end = prev_end + 1, node.end_lineno
                if isinstance(node, ast.ClassDef):
                    if self._oversized(lines, self._node_start(node), end):
                        regions.extend(self._class_regions(node, start))
                    else:
                        regions.append(_Region(start, end, "class", node.name))
                else:
                    regions.append(_Region(start, end, "function", node.name))
                prev_end = end
            else:
                group.append(node)
        flush_group()

        if prev_end < len(lines):
            regions.append(_Region(prev_end + 1, len(lines)))
        return regions

    def _class_regions(self, node: ast.ClassDef, start: int) -> list[_Region]:
        """Split an oversized class into its methods plus class-level code."""
        regions: list[_Region] = []
        cursor = start - 1
        code_end = self._node_start(node.body[0]) - 1
        for member in node.body:
            if isinstance(member, _FUNC_NODES):
                if code_end > cursor:
                    regions.append(_Region(cursor + 1, code_end, "class", node.name))
                    cursor = code_end
                regions.append(_Region(cursor + 1, member.end_lineno, "method", f"{node.name}.{member.name}"))
                cursor = member.end_lineno
            else:
                code_end = member.end_lineno
        if code_end > cursor:
            regions.append(_Region(cursor + 1, code_end, "class", node.name))
        return regions

    def _markdown_regions(self, lines: list[str]) -> list[_Region]:
        regions: list[_Region] = []
        start, heading = 1, None
        in_fence = False
        for i, line in enumerate(lines, start=1):
            if line.lstrip().startswith(("```", "~~~")):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            m = _HEADING.match(line)
            if m and i > start:
                regions.append(_Region(start, i - 1, "section", heading))
                start = i
            if m:
                heading = m.group(1) or None
        regions.append(_Region(start, len(lines), "section", heading))
        return regions

    def _boundary_regions(self, lines: list[str], language: str) -> list[_Region]:
        regions: list[_Region] = []
        start = 1
        code_lines = 1 if lines[0].strip() else 0
        for i in range(2, len(lines) + 1):
            line = lines[i - 1]
            if code_lines >= self.config.min_block_lines and _is_boundary_line(line, language):
                regions.append(_Region(start, i - 1))
                start, code_lines = i, 0
            if line.strip():
                code_lines += 1
        regions.append(_Region(start, len(lines)))
        return regions

    # ── Windowing ─────────────────────────────────────────────

    @staticmethod
    def _trim(lines: list[str], start: int, end: int) -> Optional[tuple[int, int]]:
        while start <= end and not lines[start - 1].strip():
            start += 1
        while end >= start and not lines[end - 1].strip():
            end -= 1
        return (start, end) if start <= end else None

    def _windows(self, lines: list[str], start: int, end: int) -> list[tuple[int, int]]:
        span = self._trim(lines, start, end)
        if span is None:
            return []
        start, end = span
        if not self._oversized(lines, start, end):
            return [span]

        max_lines, max_chars = self.config.max_block_lines, self.config.max_block_chars
        windows: list[tuple[int, int]] = []
        cur = start
        while cur <= end:
            stop, chars = cur, len(lines[cur - 1])
            while stop < end and stop - cur + 1 < max_lines and chars + 1 + len(lines[stop]) <= max_chars:
                chars += 1 + len(lines[stop])
                stop += 1
            windows.append((cur, stop))
            cur = stop + 1

        if len(windows) > 1 and windows[-1][1] - windows[-1][0] + 1 < self.config.min_block_lines:
            last = windows.pop()
            windows[-1] = (windows[-1][0], last[1])

        trimmed = [self._trim(lines, s, e) for s, e in windows]
        return [w for w in trimmed if w is not None]
