"""
Plugin Maker - C plugin generators for the vvctre plugin host

High-level goals:
- Recognise `section.key value` settings lines with a declarative rule table (YAML)
- Render the fixed plugin skeletons (custom default settings, button to touch,
  window position, window size, log file) with the captured values
- Feed the same generators from the CI bot, the web form bundle and a small
  HTTP server

Every generated plugin implements the host ABI: GetRequiredFunctionCount,
GetRequiredFunctionNames, PluginLoaded and one or more event callbacks.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import List, Dict, Optional, Tuple, Any, Callable
import argparse
import functools
import importlib.resources
import io
import json
import math
import os
import re
import shlex
import sys
import zipfile

import requests
import yaml
try:  # Optional libclang integration.
    from clang import cindex as clang_cindex  # type: ignore
except ImportError:  # pragma: no cover - environment without libclang
    clang_cindex = None  # type: ignore


__version__ = "0.1.0"

# Shipped as package data next to this module.
DEFAULT_RULES_PATH = str(
    importlib.resources.files(__name__).joinpath("custom_default_settings.yaml")
)

PLUGIN_KINDS = (
    "custom_default_settings",
    "button_to_touch",
    "window_position",
    "window_size",
    "log_file",
)

# The host maps touch coordinates to [0, 1] over the 320x240 bottom screen.
TOUCH_X_DIVISOR = 319
TOUCH_Y_DIVISOR = 239

HELP_URL = "https://vvanelslande.github.io/vvctre/Custom-Default-Settings-Plugin-Request"
NO_MATCHES_MESSAGE = "No matches"
FORM_NO_LINES_MESSAGE = "All the lines are invalid or the lines input is empty"


# ============================================================
# ========================= ERRORS ===========================
# ============================================================

class PluginMakerError(Exception):
    """Base class for everything that aborts a single generation attempt."""


class NoMatchesError(PluginMakerError):
    """Raised when the input holds nothing a generator recognises."""


class MalformedRequestError(PluginMakerError):
    """Raised when a request body cannot be decoded into plugin fields."""


class RuleLoadError(PluginMakerError):
    """Raised when no usable rule could be loaded."""


# ============================================================
# ======================= RULE MODELS ========================
# ============================================================

@dataclass
class Emission:
    """
    One setter a rule needs from the host, plus the call template that
    invokes it. `params` is the C parameter list, e.g. "const char* value".
    """
    name: str
    params: str
    call: str
    returns: str = "void"


@dataclass
class Rule:
    """
    Representation of a single settings rule loaded from YAML.

    - id: unique rule id (the `section.key` users type)
    - pattern: regular expression matched line by line (multi-line mode)
    - emits: setters declared and called when the pattern matches
    - values: table used by the `lookup` filter
    """
    id: str
    pattern: str
    emits: List[Emission] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    regex: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.regex = re.compile(self.pattern, re.MULTILINE)


@dataclass
class RequiredFunction:
    name: str
    params: str
    returns: str = "void"

    @property
    def pointer_type(self) -> str:
        return f"{self.name}_t"

    def declaration(self) -> str:
        return (
            f"typedef {self.returns} (*{self.pointer_type})({self.params});\n"
            f"static {self.pointer_type} {self.name};"
        )


@dataclass
class Generation:
    """
    Result of one pass of the rule table over a settings text.
    `functions` is de-duplicated by name; `calls` holds one entry per emission
    of each matched rule.
    """
    functions: List[RequiredFunction] = field(default_factory=list)
    calls: List[str] = field(default_factory=list)
    matched_rules: List[str] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [fn.name for fn in self.functions]


@dataclass
class PluginRequest:
    kind: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginResponse:
    status: int
    body: str = ""
    content_type: Optional[str] = None


# ============================================================
# ==================== CALL TEMPLATES ========================
# ============================================================

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def format_number(value: Any) -> str:
    """
    Format a numeric literal for generated C: integral values lose their
    decimal point, everything else uses the shortest round-trip repr.
    """
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"[+-]?\d+", text):
            return str(int(text))
        value = float(text)
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    if number.is_integer():
        return str(int(number))
    return repr(number)


C_STRING_ESCAPES = {"\\": "\\\\", "\"": "\\\"", "\n": "\\n", "\r": "\\r", "\t": "\\t"}


def c_string(text: str) -> str:
    """Escape text for use inside a C string literal."""

    def escape(char: str) -> str:
        if char in C_STRING_ESCAPES:
            return C_STRING_ESCAPES[char]
        # Octal escapes end after three digits.
        return "\\%03o" % ord(char)

    return re.sub(r'[\\"\x00-\x1f\x7f]', lambda m: escape(m.group(0)), text)


def _filter_c_string(value: str, arg: str, rule: Rule) -> str:
    return c_string(value)


def _filter_number(value: str, arg: str, rule: Rule) -> str:
    return format_number(value)


def _filter_lookup(value: str, arg: str, rule: Rule) -> str:
    if value in rule.values:
        return str(rule.values[value])
    return value


def _filter_hex_channel(value: str, arg: str, rule: Rule) -> str:
    channel = int(arg or 0)
    byte = int(value[channel * 2:channel * 2 + 2], 16)
    return format_number(byte / 255)


TEMPLATE_FILTERS: Dict[str, Callable[[str, str, Rule], str]] = {
    "c_string": _filter_c_string,
    "number": _filter_number,
    "lookup": _filter_lookup,
    "hex_channel": _filter_hex_channel,
}


def _parse_placeholder(expr: str) -> Tuple[str, List[Tuple[str, str]]]:
    parts = [part.strip() for part in expr.split("|")]
    filters: List[Tuple[str, str]] = []
    for spec in parts[1:]:
        name, _, arg = spec.partition(":")
        filters.append((name.strip(), arg.strip()))
    return parts[0], filters


def render_call(rule: Rule, emission: Emission, match: "re.Match[str]") -> str:
    """Substitute the captures of `match` into the emission's call template."""

    def replace(placeholder: "re.Match[str]") -> str:
        group, filters = _parse_placeholder(placeholder.group(1))
        value = match.group(int(group) if group.isdigit() else group) or ""
        for name, arg in filters:
            value = TEMPLATE_FILTERS[name](value, arg, rule)
        return value

    return TEMPLATE_PATTERN.sub(replace, emission.call)


def _template_problems(rule: Rule) -> List[str]:
    problems: List[str] = []
    for emission in rule.emits:
        for placeholder in TEMPLATE_PATTERN.finditer(emission.call):
            group, filters = _parse_placeholder(placeholder.group(1))
            if group.isdigit():
                if int(group) > rule.regex.groups:
                    problems.append(f"capture group {group} does not exist")
            elif group not in rule.regex.groupindex:
                problems.append(f"named group '{group}' does not exist")
            for name, _ in filters:
                if name not in TEMPLATE_FILTERS:
                    problems.append(f"unknown filter '{name}'")
    return problems


# ============================================================
# ==================== RULE EVALUATION =======================
# ============================================================

class SettingsRuleEngine:
    """
    Evaluates the rule table against a settings text:
    - every rule is tried in table order and applies at most once; when a
      line is repeated the first occurrence wins
    - calls come out in input order (line position, then table order)
    - a setter name is declared once no matter how many lines use it
    """

    def __init__(self, rules: List[Rule]) -> None:
        self.rules = rules

    def evaluate(self, text: str) -> Generation:
        text = normalize_newlines(text or "")
        hits: List[Tuple[int, int, Rule, "re.Match[str]"]] = []
        for order, rule in enumerate(self.rules):
            match = rule.regex.search(text)
            if match:
                hits.append((match.start(), order, rule, match))

        if not hits:
            raise NoMatchesError(NO_MATCHES_MESSAGE)

        hits.sort(key=lambda hit: (hit[0], hit[1]))

        generation = Generation()
        declared: Dict[str, RequiredFunction] = {}
        for _, _, rule, match in hits:
            generation.matched_rules.append(rule.id)
            for emission in rule.emits:
                if emission.name not in declared:
                    function = RequiredFunction(
                        name=emission.name,
                        params=emission.params,
                        returns=emission.returns,
                    )
                    declared[emission.name] = function
                    generation.functions.append(function)
                generation.calls.append(render_call(rule, emission, match))

        return generation

    def matches_line(self, line: str) -> bool:
        return any(rule.regex.search(line) for rule in self.rules)

    def split_lines(self, text: str) -> Tuple[List[str], List[str]]:
        """
        Classify non-blank lines into (useful, useless) by whether any rule
        recognises them.
        """
        useful: List[str] = []
        useless: List[str] = []
        for line in normalize_newlines(text or "").split("\n"):
            if not line.strip():
                continue
            if self.matches_line(line):
                useful.append(line)
            else:
                useless.append(line)
        return useful, useless

    def find_rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


# ============================================================
# ==================== YAML RULE LOADING =====================
# ============================================================

def load_rules_from_yaml(yaml_paths: List[str]) -> List[Rule]:
    """
    Load Rule objects from YAML rule files.

    A file may hold a list of rules or a mapping with a `rules` list. Entries
    that are incomplete or whose pattern/template is broken are reported on
    stderr and skipped so the rest of the table stays usable.
    """

    def _normalize_rule_docs(doc: Any) -> List[Dict[str, Any]]:
        if doc is None:
            return []
        if isinstance(doc, list):
            return [item for item in doc if isinstance(item, dict)]
        if isinstance(doc, dict):
            if isinstance(doc.get("rules"), list):
                return [item for item in doc["rules"] if isinstance(item, dict)]
            return [doc]
        return []

    def _build_emission(raw: Dict[str, Any]) -> Optional[Emission]:
        if any(raw.get(key) in (None, "") for key in ("name", "call")):
            return None
        return Emission(
            name=str(raw["name"]),
            params=str(raw.get("params") or "void"),
            call=str(raw["call"]),
            returns=str(raw.get("returns") or "void"),
        )

    def _build_rule(raw_rule: Dict[str, Any], origin: str) -> Optional[Rule]:
        rule_id = raw_rule.get("id")
        pattern = raw_rule.get("pattern")
        if rule_id in (None, "") or pattern in (None, ""):
            sys.stderr.write(
                f"[plugin-maker] Skipping rule from {origin}: missing id or pattern.\n"
            )
            return None

        raw_emits = raw_rule.get("emits")
        if raw_emits is None:
            raw_emits = [raw_rule]
        if not isinstance(raw_emits, list):
            raw_emits = [raw_emits]

        emits: List[Emission] = []
        for raw in raw_emits:
            emission = _build_emission(raw) if isinstance(raw, dict) else None
            if emission is None:
                sys.stderr.write(
                    f"[plugin-maker] Skipping rule '{rule_id}' from {origin}: "
                    "every emission needs a name and a call.\n"
                )
                return None
            emits.append(emission)

        values = raw_rule.get("values") or {}
        if not isinstance(values, dict):
            sys.stderr.write(
                f"[plugin-maker] Skipping rule '{rule_id}' from {origin}: values must be a mapping.\n"
            )
            return None

        try:
            rule = Rule(
                id=str(rule_id),
                pattern=str(pattern),
                emits=emits,
                values={str(key): value for key, value in values.items()},
                description=str(raw_rule.get("description", "")),
            )
        except re.error as exc:
            sys.stderr.write(
                f"[plugin-maker] Skipping rule '{rule_id}' from {origin}: invalid pattern: {exc}\n"
            )
            return None

        problems = _template_problems(rule)
        if problems:
            sys.stderr.write(
                f"[plugin-maker] Skipping rule '{rule_id}' from {origin}: {'; '.join(problems)}.\n"
            )
            return None
        return rule

    rules: List[Rule] = []
    seen_ids: Dict[str, str] = {}
    for path in yaml_paths:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                documents = list(yaml.safe_load_all(handle))
        except FileNotFoundError:
            sys.stderr.write(f"[plugin-maker] Rule file not found: {path}\n")
            continue
        except OSError as exc:
            sys.stderr.write(f"[plugin-maker] Could not read rule file {path}: {exc}\n")
            continue
        except yaml.YAMLError as exc:
            sys.stderr.write(f"[plugin-maker] Could not parse rule file {path}: {exc}\n")
            continue

        for doc_index, doc in enumerate(documents):
            for raw_rule in _normalize_rule_docs(doc):
                origin = f"{path}#doc{doc_index + 1}"
                rule = _build_rule(raw_rule, origin)
                if rule is None:
                    continue
                if rule.id in seen_ids:
                    sys.stderr.write(
                        f"[plugin-maker] Duplicate rule id '{rule.id}' in {origin} "
                        f"(first defined in {seen_ids[rule.id]}); keeping both.\n"
                    )
                else:
                    seen_ids[rule.id] = origin
                rules.append(rule)

    return rules


def default_rule_paths() -> List[str]:
    """
    Rule files to use when none are given on the command line. The
    PLUGIN_MAKER_RULES environment variable holds a shell-style list of paths.
    """
    extra = os.environ.get("PLUGIN_MAKER_RULES")
    if extra:
        return shlex.split(extra)
    return [DEFAULT_RULES_PATH]


@functools.lru_cache(maxsize=None)
def _cached_engine(paths: Tuple[str, ...]) -> SettingsRuleEngine:
    rules = load_rules_from_yaml(list(paths))
    if not rules:
        raise RuleLoadError(f"no usable rules in {', '.join(paths) or '<none>'}")
    return SettingsRuleEngine(rules)


def load_engine(rule_paths: Optional[List[str]] = None) -> SettingsRuleEngine:
    paths = tuple(rule_paths or default_rule_paths())
    return _cached_engine(paths)


# ============================================================
# ==================== PLUGIN TEMPLATES ======================
# ============================================================

INLINE = "inline"
INCLUDE = "include"

GENERATED_BANNER = "// Generated by plugin-maker. Edits will be lost when it is regenerated."

EXPORT_MACRO = """#ifdef _WIN32
#define VVCTRE_PLUGIN_EXPORT __declspec(dllexport)
#else
#define VVCTRE_PLUGIN_EXPORT
#endif"""

COMMON_TYPES_NOTICE = """/**
 * Copyright (C) 2005-2012 Gekko Emulator
 *
 * @file    common_types.h
 * @author  ShizZy <shizzy247@gmail.com>
 * @date    2012-02-11
 * @brief   Common types used throughout the project
 *
 * @section LICENSE
 * This program is free software; you can redistribute it and/or
 * modify it under the terms of the GNU General Public License as
 * published by the Free Software Foundation; either version 2 of
 * the License, or (at your option) any later version.
 *
 * This program is distributed in the hope that it will be useful, but
 * WITHOUT ANY WARRANTY; without even the implied warranty of
 * MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU
 * General Public License for more details at
 * http://www.gnu.org/copyleft/gpl.html
 *
 * Official project repository can be found at:
 * http://code.google.com/p/gekko-gc-emu/
 */"""

COMMON_TYPEDEFS = """typedef uint8_t u8;   ///< 8-bit unsigned byte
typedef uint16_t u16; ///< 16-bit unsigned short
typedef uint32_t u32; ///< 32-bit unsigned word
typedef uint64_t u64; ///< 64-bit unsigned int

typedef int8_t s8;   ///< 8-bit signed byte
typedef int16_t s16; ///< 16-bit signed short
typedef int32_t s32; ///< 32-bit signed word
typedef int64_t s64; ///< 64-bit signed int

typedef float f32;  ///< 32-bit floating point
typedef double f64; ///< 64-bit floating point

typedef u32 VAddr; ///< Represents a pointer in the userspace virtual address space.
typedef u32 PAddr; ///< Represents a pointer in the ARM11 physical address space."""

COMMON_TYPES_HEADER_TEMPLATE = """{{ notice }}

#pragma once

#include <stdbool.h>
#include <stddef.h>
#include <stdint.h>

{{ typedefs }}
"""

COMMON_TYPES_INLINE_TEMPLATE = """#include <stdbool.h>
#include <stddef.h>

{{ notice }}

#include <stdint.h>

{{ typedefs }}

////////////////////////////////////////////////////////////////////////////////////"""

SETTINGS_TEMPLATE = """{{ banner }}

{{ common_types }}

{{ export_macro }}

{{ required_names }}

{{ declarations }}

VVCTRE_PLUGIN_EXPORT int GetRequiredFunctionCount() {
    return {{ count }};
}

VVCTRE_PLUGIN_EXPORT const char** GetRequiredFunctionNames() {
    return {{ names_ref }};
}

VVCTRE_PLUGIN_EXPORT void PluginLoaded(void* core, void* plugin_manager, void* required_functions[]) {
{{ assignments }}
}

VVCTRE_PLUGIN_EXPORT void InitialSettingsOpening() {
{{ calls }}
}
"""

BUTTON_TO_TOUCH_TEMPLATE = """{{ banner }}

#include <stdbool.h>
#include <stddef.h>

static const char* required_function_names[] = {
    "vvctre_button_device_new",
    "vvctre_button_device_get_state",
    "vvctre_set_custom_touch_state",
    "vvctre_use_real_touch_state",
};

typedef void* (*vvctre_button_device_new_t)(void* plugin_manager, const char* params);
typedef bool (*vvctre_button_device_get_state_t)(void* device);
typedef void (*vvctre_set_custom_touch_state_t)(void* core, float x, float y, bool pressed);
typedef void (*vvctre_use_real_touch_state_t)(void* core);

static vvctre_button_device_new_t vvctre_button_device_new;
static vvctre_button_device_get_state_t vvctre_button_device_get_state;
static vvctre_set_custom_touch_state_t vvctre_set_custom_touch_state;
static vvctre_use_real_touch_state_t vvctre_use_real_touch_state;

static void* g_core = NULL;
static void* g_device = NULL;

{{ export_macro }}

VVCTRE_PLUGIN_EXPORT int GetRequiredFunctionCount() {
    return 4;
}

VVCTRE_PLUGIN_EXPORT const char** GetRequiredFunctionNames() {
    return required_function_names;
}

VVCTRE_PLUGIN_EXPORT void PluginLoaded(void* core, void* plugin_manager,
                                       void* required_functions[]) {
    vvctre_button_device_new = (vvctre_button_device_new_t)required_functions[0];
    vvctre_button_device_get_state = (vvctre_button_device_get_state_t)required_functions[1];
    vvctre_set_custom_touch_state = (vvctre_set_custom_touch_state_t)required_functions[2];
    vvctre_use_real_touch_state = (vvctre_use_real_touch_state_t)required_functions[3];

    g_core = core;
    g_device = vvctre_button_device_new(plugin_manager, "{{ params }}");
}

VVCTRE_PLUGIN_EXPORT void AfterSwapWindow() {
    static bool was_pressed = false;
    const bool pressed = vvctre_button_device_get_state(g_device);

    if (was_pressed && !pressed) {
        vvctre_use_real_touch_state(g_core);
        was_pressed = false;
    } else if (!was_pressed && pressed) {
        vvctre_set_custom_touch_state(g_core, {{ x }}, {{ y }}, true);
        was_pressed = true;
    }
}
"""

WINDOW_TEMPLATE = """{{ banner }}

#include <stddef.h>

static const char* required_function_name = "{{ function }}";

typedef void (*{{ function }}_t)(void* plugin_manager, int {{ first_name }}, int {{ second_name }});

static {{ function }}_t {{ function }};

static void* g_plugin_manager = NULL;

{{ export_macro }}

VVCTRE_PLUGIN_EXPORT int GetRequiredFunctionCount() {
    return 1;
}

VVCTRE_PLUGIN_EXPORT const char** GetRequiredFunctionNames() {
    return &required_function_name;
}

VVCTRE_PLUGIN_EXPORT void PluginLoaded(void* core, void* plugin_manager,
                                       void* required_functions[]) {
    {{ function }} = ({{ function }}_t)required_functions[0];
    g_plugin_manager = plugin_manager;
}

VVCTRE_PLUGIN_EXPORT void InitialSettingsOpening() {
    {{ function }}(g_plugin_manager, {{ first }}, {{ second }});
}

VVCTRE_PLUGIN_EXPORT void EmulationStarting() {
    {{ function }}(g_plugin_manager, {{ first }}, {{ second }});
}
"""

LOG_FILE_TEMPLATE = """{{ banner }}

#include <stdio.h>
#include <stddef.h>

{{ export_macro }}

static FILE* fp = NULL;

VVCTRE_PLUGIN_EXPORT int GetRequiredFunctionCount() {
    return 0;
}

VVCTRE_PLUGIN_EXPORT const char** GetRequiredFunctionNames() {
    return NULL;
}

VVCTRE_PLUGIN_EXPORT void PluginLoaded(void* core, void* plugin_manager,
                                       void* required_functions[]) {
    fp = fopen("{{ path }}", "w");
}

VVCTRE_PLUGIN_EXPORT void Log(const char* line) {
    if (fp != NULL) {
        fprintf(fp, "%s\\n", line);
    }
}

VVCTRE_PLUGIN_EXPORT void EmulatorClosing() {
    if (fp != NULL) {
        fclose(fp);
        fp = NULL;
    }
}
"""


# ============================================================
# ==================== TEMPLATE RENDERING ====================
# ============================================================

def fill_template(template: str, values: Dict[str, Any]) -> str:
    def replace(match: "re.Match[str]") -> str:
        return str(values[match.group(1)])

    return TEMPLATE_PATTERN.sub(replace, template)


def _license_appendix(license_text: Optional[str]) -> str:
    if not license_text:
        return ""
    body = license_text.rstrip().replace("*/", "* /")
    return f"\n/*\nLicense:\n\n{body}\n*/\n"


def render_common_types_header() -> str:
    return fill_template(
        COMMON_TYPES_HEADER_TEMPLATE,
        {"notice": COMMON_TYPES_NOTICE, "typedefs": COMMON_TYPEDEFS},
    )


def render_custom_default_settings(
    generation: Generation,
    *,
    common_types: str = INLINE,
    license_text: Optional[str] = None,
) -> str:
    """
    Render the custom default settings plugin. With common_types=INCLUDE the
    integer typedefs are expected in a companion common_types.h.
    """
    if not generation.functions:
        raise NoMatchesError(NO_MATCHES_MESSAGE)
    if common_types not in (INLINE, INCLUDE):
        raise ValueError(f"unknown common types mode: {common_types!r}")

    names = generation.names
    if len(names) == 1:
        required_names = f'static const char* required_function_name = "{names[0]}";'
        names_ref = "&required_function_name"
    else:
        entries = "\n".join(f'    "{name}",' for name in names)
        required_names = f"static const char* required_function_names[] = {{\n{entries}\n}};"
        names_ref = "required_function_names"

    if common_types == INLINE:
        types_block = fill_template(
            COMMON_TYPES_INLINE_TEMPLATE,
            {"notice": COMMON_TYPES_NOTICE, "typedefs": COMMON_TYPEDEFS},
        )
    else:
        types_block = '#include "common_types.h"'

    code = fill_template(
        SETTINGS_TEMPLATE,
        {
            "banner": GENERATED_BANNER,
            "common_types": types_block,
            "export_macro": EXPORT_MACRO,
            "required_names": required_names,
            "declarations": "\n".join(fn.declaration() for fn in generation.functions),
            "count": len(names),
            "names_ref": names_ref,
            "assignments": "\n".join(
                f"    {fn.name} = ({fn.pointer_type})required_functions[{index}];"
                for index, fn in enumerate(generation.functions)
            ),
            "calls": "\n".join(f"    {call}" for call in generation.calls),
        },
    )
    return code + _license_appendix(license_text)


def touch_point(x: float, y: float) -> Tuple[float, float]:
    """Normalise a bottom-screen pixel coordinate to the host's touch range."""
    return x / TOUCH_X_DIVISOR, y / TOUCH_Y_DIVISOR


def render_button_to_touch(
    params: str, x: float, y: float, *, license_text: Optional[str] = None
) -> str:
    touch_x, touch_y = touch_point(x, y)
    code = fill_template(
        BUTTON_TO_TOUCH_TEMPLATE,
        {
            "banner": GENERATED_BANNER,
            "export_macro": EXPORT_MACRO,
            "params": c_string(params),
            "x": format_number(touch_x),
            "y": format_number(touch_y),
        },
    )
    return code + _license_appendix(license_text)


def _render_window(
    function: str,
    first_name: str,
    second_name: str,
    first: Any,
    second: Any,
    license_text: Optional[str],
) -> str:
    code = fill_template(
        WINDOW_TEMPLATE,
        {
            "banner": GENERATED_BANNER,
            "export_macro": EXPORT_MACRO,
            "function": function,
            "first_name": first_name,
            "second_name": second_name,
            "first": format_number(first),
            "second": format_number(second),
        },
    )
    return code + _license_appendix(license_text)


def render_window_position(x: int, y: int, *, license_text: Optional[str] = None) -> str:
    return _render_window("vvctre_set_os_window_position", "x", "y", x, y, license_text)


def render_window_size(width: int, height: int, *, license_text: Optional[str] = None) -> str:
    return _render_window(
        "vvctre_set_os_window_size", "width", "height", width, height, license_text
    )


def render_log_file(path: str, *, license_text: Optional[str] = None) -> str:
    code = fill_template(
        LOG_FILE_TEMPLATE,
        {
            "banner": GENERATED_BANNER,
            "export_macro": EXPORT_MACRO,
            "path": c_string(path),
        },
    )
    return code + _license_appendix(license_text)


# ============================================================
# ===================== FIELD DECODING =======================
# ============================================================

def _require_text(fields: Dict[str, Any], key: str) -> str:
    value = fields.get(key)
    if value is None:
        raise MalformedRequestError(f"missing field '{key}'")
    if not isinstance(value, str):
        raise MalformedRequestError(f"field '{key}' must be text")
    return value


def _require_number(fields: Dict[str, Any], key: str) -> float:
    value = fields.get(key)
    if value is None or isinstance(value, bool):
        raise MalformedRequestError(f"missing or invalid field '{key}'")
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, float):
            number = value
        else:
            text = str(value).strip()
            if re.fullmatch(r"[+-]?\d+", text):
                return int(text)
            number = float(text)
    except ValueError as exc:
        raise MalformedRequestError(f"field '{key}' is not a number: {value!r}") from exc
    if not math.isfinite(number):
        raise MalformedRequestError(f"field '{key}' is not a finite number: {value!r}")
    return number


def _require_int(fields: Dict[str, Any], key: str) -> int:
    """Window coordinates and sizes are C ints; 800.0 is accepted, 1.5 is not."""
    number = _require_number(fields, key)
    if isinstance(number, float):
        if not number.is_integer():
            raise MalformedRequestError(f"field '{key}' must be a whole number: {number!r}")
        return int(number)
    return number


def render_plugin(
    kind: str,
    fields: Dict[str, Any],
    *,
    engine: Optional[SettingsRuleEngine] = None,
    common_types: str = INLINE,
    license_text: Optional[str] = None,
) -> str:
    """
    Render one plugin of `kind` from already-decoded fields:
      custom_default_settings: lines
      button_to_touch:         params, x, y
      window_position:         x, y
      window_size:             width, height
      log_file:                path
    """
    if kind == "custom_default_settings":
        engine = engine or load_engine()
        generation = engine.evaluate(_require_text(fields, "lines"))
        return render_custom_default_settings(
            generation, common_types=common_types, license_text=license_text
        )
    if kind == "button_to_touch":
        return render_button_to_touch(
            _require_text(fields, "params"),
            _require_number(fields, "x"),
            _require_number(fields, "y"),
            license_text=license_text,
        )
    if kind == "window_position":
        return render_window_position(
            _require_int(fields, "x"),
            _require_int(fields, "y"),
            license_text=license_text,
        )
    if kind == "window_size":
        return render_window_size(
            _require_int(fields, "width"),
            _require_int(fields, "height"),
            license_text=license_text,
        )
    if kind == "log_file":
        path = _require_text(fields, "path").strip()
        if not path:
            raise NoMatchesError("No log file path")
        return render_log_file(path, license_text=license_text)
    raise MalformedRequestError(f"unknown plugin kind '{kind}'")


# ============================================================
# ===================== LIBCLANG CHECK =======================
# ============================================================

_CLANG_MISSING_WARNED = False


def _warn_once_clang_missing() -> None:
    global _CLANG_MISSING_WARNED
    if _CLANG_MISSING_WARNED:
        return
    sys.stderr.write(
        "[plugin-maker] clang.cindex is not available; skipping source check.\n"
    )
    _CLANG_MISSING_WARNED = True


def _default_clang_args() -> List[str]:
    """
    Arguments used to parse generated plugins. Users can append flags via the
    PLUGIN_MAKER_CLANG_ARGS environment variable.
    """
    base = ["-x", "c", "-std=c11"]
    extra = os.environ.get("PLUGIN_MAKER_CLANG_ARGS")
    if extra:
        base.extend(shlex.split(extra))
    return base


def clang_available() -> bool:
    if clang_cindex is None:
        return False
    try:
        clang_cindex.Index.create()
    except Exception:  # pragma: no cover - libclang shared library missing
        return False
    return True


def check_generated_source(code: str, filename: str = "plugin.c") -> List[str]:
    """
    Parse generated source with libclang and return its error diagnostics as
    "file:line:column: message" strings. Returns an empty list (after a
    one-time warning) when libclang is unavailable.
    """
    if clang_cindex is None:
        _warn_once_clang_missing()
        return []

    try:
        index = clang_cindex.Index.create()
    except Exception as exc:  # pragma: no cover - libclang internal failure
        sys.stderr.write(f"[plugin-maker] Failed to initialize libclang: {exc}\n")
        return []

    clang_tu = index.parse(
        filename,
        args=_default_clang_args(),
        unsaved_files=[(filename, code)],
    )
    problems: List[str] = []
    for diag in clang_tu.diagnostics:
        if diag.severity < clang_cindex.Diagnostic.Error:
            continue
        location = diag.location
        problems.append(f"{filename}:{location.line}:{location.column}: {diag.spelling}")
    return problems


# ============================================================
# ====================== BOT FRONT-END =======================
# ============================================================

BOT_REQUEST_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
    (
        "custom_default_settings",
        re.compile(r"\AType: Custom Default Settings\n\n(?P<lines>.*)\Z", re.DOTALL),
    ),
    (
        "button_to_touch",
        re.compile(r"\AType: Button To Touch\n\nX: (?P<x>\d+)\nY: (?P<y>\d+)\nParams: `(?P<params>.+)`"),
    ),
    (
        "window_position",
        re.compile(r"\AType: Window Position\n\nX: (?P<x>-?\d+)\nY: (?P<y>-?\d+)"),
    ),
    (
        "window_size",
        re.compile(r"\AType: Window Size\n\nWidth: (?P<width>\d+)\nHeight: (?P<height>\d+)"),
    ),
    (
        "log_file",
        re.compile(r"\AType: Log File\n\n(?P<path>.+)"),
    ),
]


def parse_plugin_request(body: str) -> Optional[PluginRequest]:
    """Recognise a bot comment/issue body. Returns None for anything else."""
    text = normalize_newlines(body or "")
    for kind, pattern in BOT_REQUEST_PATTERNS:
        match = pattern.match(text)
        if match:
            return PluginRequest(kind=kind, fields=match.groupdict())
    return None


def run_bot(
    body: str,
    out_dir: str = ".",
    *,
    engine: Optional[SettingsRuleEngine] = None,
    license_text: Optional[str] = None,
) -> int:
    """
    Write plugin.c for a recognised request and print its kind.
    Returns 1 when there is nothing to generate.
    """
    request = parse_plugin_request(body)
    if request is None:
        sys.stderr.write("[plugin-maker] Comment is not a plugin request.\n")
        return 1

    try:
        code = render_plugin(
            request.kind, request.fields, engine=engine, license_text=license_text
        )
    except PluginMakerError as exc:
        sys.stderr.write(f"[plugin-maker] {exc}\n")
        return 1

    os.makedirs(out_dir, exist_ok=True)
    with open(os.path.join(out_dir, "plugin.c"), "w", encoding="utf-8") as f:
        f.write(code)
    print(request.kind.replace("_", "-"))
    return 0


# ============================================================
# ===================== ISSUE CLEANER ========================
# ============================================================

@dataclass
class IssueCleanup:
    kept: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    closed: bool = False


class GitHubIssueClient:
    """Minimal GitHub REST client for the issue endpoints the cleaner needs."""

    def __init__(
        self,
        repository: str,
        token: Optional[str] = None,
        *,
        api_url: str = "https://api.github.com",
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ) -> None:
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "User-Agent": f"plugin-maker/{__version__}",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.api_url}/repos/{self.repository}{path}"
        response = self.session.request(method, url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    def create_comment(self, number: int, body: str) -> Any:
        return self._request("POST", f"/issues/{number}/comments", {"body": body})

    def update_issue(self, number: int, **fields: Any) -> Any:
        return self._request("PATCH", f"/issues/{number}", fields)

    def lock_issue(self, number: int) -> Any:
        return self._request("PUT", f"/issues/{number}/lock")


def clean_issue(
    client: GitHubIssueClient,
    number: int,
    body: str,
    *,
    engine: Optional[SettingsRuleEngine] = None,
) -> IssueCleanup:
    """
    Keep only the lines of a settings request issue that a rule recognises.
    An issue with no such line is answered with the help link, closed as
    Invalid and locked.
    """
    engine = engine or load_engine()
    kept, removed = engine.split_lines(body)

    if not kept:
        client.create_comment(number, f"Read {HELP_URL}")
        client.update_issue(number, state="closed", labels=["Invalid"])
        client.lock_issue(number)
        return IssueCleanup(kept=kept, removed=removed, closed=True)

    client.update_issue(number, body="\n".join(kept))
    if removed:
        listing = "\n".join(removed)
        client.create_comment(
            number,
            f"Useless lines removed:\n```\n{listing}\n```\n\n"
            f"Lines that aren't in {HELP_URL} are useless lines.",
        )
    return IssueCleanup(kept=kept, removed=removed, closed=False)


# ============================================================
# ====================== FORM BUNDLE =========================
# ============================================================

def make_bundle(
    kind: str,
    fields: Dict[str, Any],
    *,
    engine: Optional[SettingsRuleEngine] = None,
    license_text: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build the files the web form hands out: plugin.c, common_types.h for the
    settings plugin, and license.txt when a license is configured.
    """
    files: Dict[str, str] = {}
    if kind == "custom_default_settings":
        engine = engine or load_engine()
        useful, _ = engine.split_lines(_require_text(fields, "lines"))
        if not useful:
            raise NoMatchesError(FORM_NO_LINES_MESSAGE)
        generation = engine.evaluate("\n".join(useful))
        files["plugin.c"] = render_custom_default_settings(generation, common_types=INCLUDE)
        files["common_types.h"] = render_common_types_header()
    else:
        files["plugin.c"] = render_plugin(kind, fields)

    if license_text:
        files["license.txt"] = license_text
    return files


def bundle_to_zip(files: Dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            info = zipfile.ZipInfo(name, date_time=(1980, 1, 1, 0, 0, 0))
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, content)
    return buffer.getvalue()


# ============================================================
# ====================== HTTP SERVER =========================
# ============================================================

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST",
    "Access-Control-Allow-Headers": "*",
}

# path -> (plugin kind, field that receives a raw text body or None for JSON)
SERVER_ROUTES: Dict[str, Tuple[str, Optional[str]]] = {
    "/customdefaultsettings": ("custom_default_settings", "lines"),
    "/buttontotouch": ("button_to_touch", None),
    "/windowposition": ("window_position", None),
    "/windowsize": ("window_size", None),
    "/logfile": ("log_file", "path"),
}


def handle_plugin_request(
    path: str,
    body: str,
    *,
    engine: Optional[SettingsRuleEngine] = None,
    license_text: Optional[str] = None,
) -> PluginResponse:
    """Turn one POST into a response without touching the network."""
    route = SERVER_ROUTES.get(path.split("?", 1)[0])
    if route is None:
        return PluginResponse(400)

    kind, text_field = route
    if text_field is not None:
        fields: Dict[str, Any] = {text_field: body}
    else:
        try:
            fields = json.loads(body)
        except ValueError:
            return PluginResponse(400, "Malformed request body", "text/plain")
        if not isinstance(fields, dict):
            return PluginResponse(400, "Malformed request body", "text/plain")

    try:
        code = render_plugin(kind, fields, engine=engine, license_text=license_text)
    except NoMatchesError as exc:
        return PluginResponse(400, str(exc), "text/plain")
    except MalformedRequestError as exc:
        return PluginResponse(400, f"Malformed request body: {exc}", "text/plain")
    return PluginResponse(200, code, "text/x-c")


class PluginServer(HTTPServer):
    def __init__(
        self,
        address: Tuple[str, int],
        *,
        engine: SettingsRuleEngine,
        license_text: Optional[str] = None,
    ) -> None:
        super().__init__(address, PluginRequestHandler)
        self.engine = engine
        self.license_text = license_text


class PluginRequestHandler(BaseHTTPRequestHandler):
    server_version = f"plugin-maker/{__version__}"

    def do_POST(self) -> None:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            self._send(PluginResponse(400, "Malformed request body", "text/plain"))
            return

        raw = self.rfile.read(length) if length > 0 else b""
        response = handle_plugin_request(
            self.path,
            raw.decode("utf-8", errors="replace"),
            engine=self.server.engine,
            license_text=self.server.license_text,
        )
        self._send(response)

    def _method_not_allowed(self) -> None:
        self._send(PluginResponse(405))

    do_GET = _method_not_allowed
    do_HEAD = _method_not_allowed
    do_PUT = _method_not_allowed
    do_PATCH = _method_not_allowed
    do_DELETE = _method_not_allowed
    do_OPTIONS = _method_not_allowed

    def _send(self, response: PluginResponse) -> None:
        payload = response.body.encode("utf-8")
        self.send_response(response.status)
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)
        if response.content_type:
            self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if payload and self.command != "HEAD":
            self.wfile.write(payload)

    def log_message(self, format: str, *args: Any) -> None:
        sys.stderr.write(f"[plugin-maker] {self.address_string()} {format % args}\n")


def make_server(
    host: str = "",
    port: int = 0,
    *,
    engine: Optional[SettingsRuleEngine] = None,
    license_text: Optional[str] = None,
) -> PluginServer:
    return PluginServer(
        (host, port), engine=engine or load_engine(), license_text=license_text
    )


def serve(
    host: str = "",
    port: int = 0,
    *,
    engine: Optional[SettingsRuleEngine] = None,
    license_text: Optional[str] = None,
) -> None:
    server = make_server(host, port, engine=engine, license_text=license_text)
    print("Port:", server.server_address[1], flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


# ============================================================
# ============================ CLI ===========================
# ============================================================

def read_license(path: Optional[str]) -> Optional[str]:
    """
    Read the license text appended to generated plugins. The path comes from
    --license or PLUGIN_MAKER_LICENSE; no path means no license section.
    """
    path = path or os.environ.get("PLUGIN_MAKER_LICENSE")
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    except OSError as exc:
        sys.stderr.write(f"[plugin-maker] Could not read license file {path}: {exc}\n")
        return None


def _add_field_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "kind",
        choices=PLUGIN_KINDS,
        help="Plugin to generate."
    )
    parser.add_argument(
        "--input",
        metavar="FILE",
        help="Settings lines for custom_default_settings ('-' or omitted reads stdin).",
    )
    parser.add_argument("--params", help="Button device params (button_to_touch).")
    parser.add_argument("--x", help="X coordinate (button_to_touch, window_position).")
    parser.add_argument("--y", help="Y coordinate (button_to_touch, window_position).")
    parser.add_argument("--width", help="Window width (window_size).")
    parser.add_argument("--height", help="Window height (window_size).")
    parser.add_argument("--path", help="Log file path (log_file).")


def _fields_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    if args.kind == "custom_default_settings":
        if args.input in (None, "-"):
            return {"lines": sys.stdin.read()}
        with open(args.input, "r", encoding="utf-8") as handle:
            return {"lines": handle.read()}
    names = ("params", "x", "y", "width", "height", "path")
    return {name: getattr(args, name) for name in names if getattr(args, name) is not None}


def _write_output(path: str, data: Any) -> None:
    if path == "-":
        if isinstance(data, bytes):
            sys.stdout.buffer.write(data)
        else:
            sys.stdout.write(data)
        return
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if isinstance(data, bytes):
        with open(path, "wb") as f:
            f.write(data)
    else:
        with open(path, "w", encoding="utf-8") as f:
            f.write(data)


def _settings_engine(args: argparse.Namespace) -> Optional[SettingsRuleEngine]:
    """Only the settings plugin needs the rule table."""
    if args.kind != "custom_default_settings":
        return None
    return load_engine(args.rules)


def _cmd_generate(args: argparse.Namespace) -> int:
    code = render_plugin(
        args.kind,
        _fields_from_args(args),
        engine=_settings_engine(args),
        common_types=args.common_types,
        license_text=read_license(args.license),
    )
    if args.check:
        filename = "plugin.c" if args.out == "-" else os.path.basename(args.out)
        problems = check_generated_source(code, filename)
        for problem in problems:
            sys.stderr.write(f"[plugin-maker] {problem}\n")
        if problems:
            return 2
    _write_output(args.out, code)
    if args.kind == "custom_default_settings" and args.common_types == INCLUDE and args.out != "-":
        header_path = os.path.join(os.path.dirname(args.out), "common_types.h")
        _write_output(header_path, render_common_types_header())
    return 0


def _cmd_bundle(args: argparse.Namespace) -> int:
    files = make_bundle(
        args.kind,
        _fields_from_args(args),
        engine=_settings_engine(args),
        license_text=read_license(args.license),
    )
    _write_output(args.out, bundle_to_zip(files))
    return 0


def _cmd_bot(args: argparse.Namespace) -> int:
    body = os.environ.get("COMMENT_BODY") or os.environ.get("ISSUE_BODY") or ""
    # Without --rules the table is loaded only if the request needs it.
    engine = load_engine(args.rules) if args.rules else None
    return run_bot(body, args.out_dir, engine=engine, license_text=read_license(args.license))


def _cmd_clean_issue(args: argparse.Namespace) -> int:
    repository = args.repository or os.environ.get("GITHUB_REPOSITORY")
    number = args.issue or os.environ.get("ISSUE_NUMBER")
    if not repository or not str(number).isdigit():
        sys.stderr.write("[plugin-maker] clean-issue needs GITHUB_REPOSITORY and a numeric ISSUE_NUMBER.\n")
        return 2
    client = GitHubIssueClient(repository, os.environ.get("GITHUB_TOKEN"))
    try:
        result = clean_issue(
            client, int(number), os.environ.get("ISSUE_BODY", ""), engine=load_engine(args.rules)
        )
    except requests.RequestException as exc:
        sys.stderr.write(f"[plugin-maker] GitHub request failed: {exc}\n")
        return 2
    print(json.dumps({"kept": len(result.kept), "removed": len(result.removed), "closed": result.closed}))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    serve(args.host, args.port, engine=load_engine(args.rules), license_text=read_license(args.license))
    return 0


def _cmd_rules(args: argparse.Namespace) -> int:
    engine = load_engine(args.rules)
    if args.json:
        as_json = [
            {
                "id": rule.id,
                "pattern": rule.pattern,
                "functions": [emission.name for emission in rule.emits],
            }
            for rule in engine.rules
        ]
        print(json.dumps(as_json, indent=2))
        return 0
    for rule in engine.rules:
        print(f"{rule.id}\t{rule.pattern}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.
    Intended usage:
      plugin-maker generate custom_default_settings --input settings.txt --out plugin.c
      plugin-maker generate window_size --width 800 --height 480
      plugin-maker serve --port 8080
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--rules",
        nargs="+",
        metavar="RULE_FILE",
        help="YAML rule file(s) (default: the bundled custom default settings table).",
    )
    common.add_argument(
        "--license",
        metavar="FILE",
        help="License text appended to generated plugins.",
    )

    parser = argparse.ArgumentParser(
        prog="plugin-maker",
        description="Generate vvctre plugin sources from settings lines and form fields."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_p = subparsers.add_parser(
        "generate", parents=[common], help="Render one plugin source file."
    )
    _add_field_arguments(generate_p)
    generate_p.add_argument("--out", default="plugin.c", help="Output file ('-' for stdout).")
    generate_p.add_argument(
        "--common-types",
        choices=(INLINE, INCLUDE),
        default=INLINE,
        help="Inline the integer typedefs or include common_types.h (written next to --out).",
    )
    generate_p.add_argument(
        "--check",
        action="store_true",
        help="Parse the output with libclang and fail on error diagnostics.",
    )
    generate_p.set_defaults(handler=_cmd_generate)

    bundle_p = subparsers.add_parser(
        "bundle", parents=[common], help="Build the plugin.zip the web form hands out."
    )
    _add_field_arguments(bundle_p)
    bundle_p.add_argument("--out", default="plugin.zip", help="Output zip ('-' for stdout).")
    bundle_p.set_defaults(handler=_cmd_bundle)

    bot_p = subparsers.add_parser(
        "bot", parents=[common], help="Generate plugin.c from COMMENT_BODY/ISSUE_BODY."
    )
    bot_p.add_argument("--out-dir", default=".", help="Directory that receives plugin.c.")
    bot_p.set_defaults(handler=_cmd_bot)

    clean_p = subparsers.add_parser(
        "clean-issue", parents=[common], help="Drop unrecognised lines from a settings request issue."
    )
    clean_p.add_argument("--repository", help="owner/name (default: GITHUB_REPOSITORY).")
    clean_p.add_argument("--issue", help="Issue number (default: ISSUE_NUMBER).")
    clean_p.set_defaults(handler=_cmd_clean_issue)

    serve_p = subparsers.add_parser(
        "serve", parents=[common], help="Serve the generators over HTTP."
    )
    serve_p.add_argument("--host", default="", help="Interface to bind (default: all).")
    serve_p.add_argument(
        "--port",
        type=int,
        default=os.environ.get("PORT") or "0",
        help="Port to listen on (default: PORT or an ephemeral port).",
    )
    serve_p.set_defaults(handler=_cmd_serve)

    rules_p = subparsers.add_parser(
        "rules", parents=[common], help="List the loaded settings rules."
    )
    rules_p.add_argument("--json", action="store_true", help="Emit JSON instead of text.")
    rules_p.set_defaults(handler=_cmd_rules)

    args = parser.parse_args(argv)

    try:
        return args.handler(args)
    except NoMatchesError as exc:
        sys.stderr.write(f"[plugin-maker] {exc}\n")
        return 1
    except PluginMakerError as exc:
        sys.stderr.write(f"[plugin-maker] {exc}\n")
        return 2
    except OSError as exc:
        sys.stderr.write(f"[plugin-maker] {exc}\n")
        return 2

