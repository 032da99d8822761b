"""Supported languages and how to build and run each of them.

A language is described entirely by data: the argv templates below are
rendered per execution with the paths the session allocated.

    {source}    path of the generated source file
    {artifact}  path of the compiled output (compiled languages only)
    {workdir}   the session's private directory
"""
import os
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from errors import UnsupportedLanguage


@dataclass(frozen=True)
class LanguageSpec:
    id: str
    source_extension: str
    default_snippet: str
    run_command: Tuple[str, ...]
    build_command: Optional[Tuple[str, ...]] = None
    source_name: Optional[str] = None
    artifact_name: str = "program.exe" if os.name == "nt" else "program"

    @property
    def needs_compile(self) -> bool:
        return self.build_command is not None

    @property
    def source_filename(self) -> str:
        return self.source_name or f"main{self.source_extension}"

    def build_argv(self, source_path: str, artifact_path: str, workdir: str) -> List[str]:
        if self.build_command is None:
            raise ValueError(f"{self.id} has no build step")
        return _render(self.build_command, source_path, artifact_path, workdir)

    def run_argv(self, source_path: str, artifact_path: Optional[str], workdir: str) -> List[str]:
        return _render(self.run_command, source_path, artifact_path or "", workdir)


def _render(template, source, artifact, workdir):
    return [part.format(source=source, artifact=artifact, workdir=workdir) for part in template]


class LanguageRegistry:
    def __init__(self, specs, default_language: str):
        table: Dict[str, LanguageSpec] = {}
        for spec in specs:
            if spec.id in table:
                raise ValueError(f"Duplicate language id: {spec.id}")
            _validate(spec)
            table[spec.id] = spec

        if default_language not in table:
            raise ValueError(f"Default language {default_language!r} is not registered")

        self._specs = table
        self.default_language = default_language

    def resolve(self, language_id: str) -> LanguageSpec:
        try:
            return self._specs[language_id]
        except (KeyError, TypeError):
            raise UnsupportedLanguage(language_id) from None

    def default_snippets(self) -> Dict[str, str]:
        return {spec.id: spec.default_snippet for spec in self._specs.values()}

    def ids(self) -> List[str]:
        return list(self._specs)

    def __contains__(self, language_id) -> bool:
        return language_id in self._specs

    def __iter__(self) -> Iterator[LanguageSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


def _validate(spec: LanguageSpec):
    if not spec.id:
        raise ValueError("Language id must not be empty")
    if not spec.source_extension.startswith("."):
        raise ValueError(f"{spec.id}: source extension must start with '.'")
    if not spec.run_command:
        raise ValueError(f"{spec.id}: run command is empty")

    run = " ".join(spec.run_command)
    if spec.needs_compile:
        build = " ".join(spec.build_command)
        if "{source}" not in build:
            raise ValueError(f"{spec.id}: build command must reference {{source}}")
        if "{artifact}" not in build and "{workdir}" not in build:
            raise ValueError(f"{spec.id}: build command must say where the output goes")
        if "{artifact}" not in run and "{workdir}" not in run:
            raise ValueError(f"{spec.id}: run command must reference the build output")
    elif "{source}" not in run:
        raise ValueError(f"{spec.id}: run command must reference {{source}}")


def build_default_registry(settings) -> LanguageRegistry:
    specs = [
        LanguageSpec(
            id="python",
            source_extension=".py",
            default_snippet="# Write Python code here\n",
            run_command=(settings.PYTHON_COMMAND, "-u", "{source}"),
        ),
        LanguageSpec(
            id="javascript",
            source_extension=".js",
            default_snippet="// Write JavaScript code here\n",
            run_command=(settings.NODE_COMMAND, "{source}"),
        ),
        LanguageSpec(
            id="c",
            source_extension=".c",
            default_snippet='#include <stdio.h>\n\nint main(void) {\n    printf("Hello, world!\\n");\n    return 0;\n}\n',
            build_command=(settings.GCC_COMMAND, "{source}", "-o", "{artifact}"),
            run_command=("{artifact}",),
        ),
        LanguageSpec(
            id="cpp",
            source_extension=".cpp",
            default_snippet='#include <iostream>\n\nint main() {\n    std::cout << "Hello, world!" << std::endl;\n    return 0;\n}\n',
            build_command=(settings.GXX_COMMAND, "{source}", "-o", "{artifact}", "-std=c++17"),
            run_command=("{artifact}",),
        ),
        LanguageSpec(
            id="java",
            source_extension=".java",
            source_name="Main.java",
            artifact_name="Main.class",
            default_snippet='public class Main {\n    public static void main(String[] args) {\n        System.out.println("Hello, world!");\n    }\n}\n',
            build_command=(settings.JAVAC_COMMAND, "-d", "{workdir}", "{source}"),
            run_command=(settings.JAVA_COMMAND, "-cp", "{workdir}", "Main"),
        ),
    ]
    return LanguageRegistry(specs, default_language=settings.DEFAULT_LANGUAGE)
