#!/usr/bin/env python3
"""Bash write-target extraction.

Recovers the filesystem paths a shell command line could write to:
1. In-place editors (sed -i, gsed -i, perl -i, ruby -i)
2. Redirections (>, >>, 1>, 2>, &>, ... and attached forms like 2>/tmp/err)
3. tee targets (up to the next pipe, semicolon or logical operator)

This is a heuristic: it does not expand variables, globs or command
substitutions. Targets are reported in discovery order, duplicates kept.
"""

import posixpath

REDIRECTION_OPERATORS = frozenset({">", ">>", "1>", "1>>", "2>", "2>>", "&>", "&>>"})

# Longest first so "2>>" wins over "2>" and ">>" over ">"
REDIRECTION_PREFIXES = ("&>>", "&>", "2>>", "2>", "1>>", "1>", ">>", ">")

COMMAND_BOUNDARIES = frozenset({"|", "||", "&&", ";"})

SED_COMMANDS = ("sed", "gsed")
PERL_RUBY_COMMANDS = ("perl", "ruby")


# ============================================================
# Tokenizer
# ============================================================


def tokenize_bash_command(command: str) -> list[str]:
    """Split a command line into tokens, respecting quotes and escapes.

    Handles:
    - Single quotes ('...'): no escapes inside, quotes kept in the token
    - Double quotes ("..."): quotes kept in the token
    - Backslash escapes outside single quotes (backslash dropped)
    - | and ; outside quotes become standalone tokens
    - Whitespace runs outside quotes delimit tokens

    Args:
        command: The bash command line.

    Returns:
        Ordered list of tokens. "||" appears as two "|" tokens.
    """
    tokens: list[str] = []
    current: list[str] = []
    in_single = False
    in_double = False
    escaped = False

    for c in command:
        if escaped:
            current.append(c)
            escaped = False
            continue

        if c == "\\" and not in_single:
            escaped = True
            continue

        if c == "'" and not in_double:
            in_single = not in_single
            current.append(c)
            continue

        if c == '"' and not in_single:
            in_double = not in_double
            current.append(c)
            continue

        if not in_single and not in_double:
            if c in ("|", ";"):
                if current:
                    tokens.append("".join(current))
                    current = []
                tokens.append(c)
                continue
            if c in (" ", "\t", "\n", "\r"):
                if current:
                    tokens.append("".join(current))
                    current = []
                continue

        current.append(c)

    if current:
        tokens.append("".join(current))

    return tokens


def clean_bash_path_token(token: str) -> str:
    """Trim whitespace, one pair of outer quotes, and trailing ;|& from a token."""
    token = token.strip()
    if not token:
        return ""

    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
        token = token[1:-1]

    return token.rstrip(";|&")


def _command_base_name(token: str) -> str:
    return posixpath.basename(clean_bash_path_token(token))


# ============================================================
# In-place Editors
# ============================================================


def _clean_targets(tokens: list[str]) -> list[str]:
    targets = []
    for tok in tokens:
        target = clean_bash_path_token(tok)
        if target:
            targets.append(target)
    return targets


def _drop_script_operand(operands: list[str], has_script_option: bool) -> list[str]:
    # Without -e/-f the first operand is the script itself, not a file
    if has_script_option:
        return operands
    if len(operands) <= 1:
        return []
    return operands[1:]


def _is_bsd_suffix(token: str) -> bool:
    suffix = clean_bash_path_token(token)
    return token in ("''", '""') or (suffix.startswith(".") and "/" not in suffix)


def extract_sed_in_place_targets(args: list[str]) -> list[str]:
    """Return file operands of `sed -i`, or [] if not in-place.

    Args:
        args: Tokens after the sed command name.
    """
    operands: list[str] = []
    in_place = False
    has_script_option = False

    i = 0
    while i < len(args):
        tok = args[i]
        if tok in COMMAND_BOUNDARIES:
            break
        if tok.startswith("-"):
            if tok == "--":
                operands.extend(args[i + 1 :])
                break
            if tok.startswith("-i"):
                in_place = True
                # BSD sed: "-i ''" / "-i .bak" takes a separate suffix operand
                if tok == "-i" and i + 1 < len(args) and _is_bsd_suffix(args[i + 1]):
                    i += 1
                i += 1
                continue
            if tok in ("-e", "-f"):
                has_script_option = True
                i += 2
                continue
            i += 1
            continue
        operands.append(tok)
        i += 1

    if not in_place:
        return []
    return _clean_targets(_drop_script_operand(operands, has_script_option))


def extract_perl_ruby_in_place_targets(args: list[str]) -> list[str]:
    """Return file operands of `perl -i` / `ruby -i`, or [] if not in-place.

    Any flag containing "i" counts as in-place (-i, -pi, -i.bak, -pie).
    """
    operands: list[str] = []
    in_place = False
    has_script_option = False

    i = 0
    while i < len(args):
        tok = args[i]
        if tok in COMMAND_BOUNDARIES:
            break
        if tok.startswith("-"):
            if tok == "--":
                operands.extend(args[i + 1 :])
                break
            if "i" in tok:
                in_place = True
            if tok == "-e":
                has_script_option = True
                i += 2
                continue
            i += 1
            continue
        operands.append(tok)
        i += 1

    if not in_place:
        return []
    return _clean_targets(_drop_script_operand(operands, has_script_option))


def extract_in_place_editor_targets(tokens: list[str]) -> list[str]:
    """Dispatch on the first token's base name to the in-place editor parsers."""
    if not tokens:
        return []

    cmd = _command_base_name(tokens[0])
    if cmd in SED_COMMANDS:
        return extract_sed_in_place_targets(tokens[1:])
    if cmd in PERL_RUBY_COMMANDS:
        return extract_perl_ruby_in_place_targets(tokens[1:])
    return []


# ============================================================
# Redirections and tee
# ============================================================


def extract_redirection_target(tokens: list[str], idx: int) -> str:
    """Return the redirection target introduced by tokens[idx], or "".

    An exact operator consumes the next token; an operator prefix yields
    the attached suffix (2>/tmp/err -> /tmp/err). Targets starting with &
    are fd duplications (2>&1, 2> &1), not paths.
    """
    tok = tokens[idx]
    if not tok:
        return ""

    if tok in REDIRECTION_OPERATORS:
        if idx + 1 >= len(tokens):
            return ""
        target = clean_bash_path_token(tokens[idx + 1])
    else:
        target = ""
        for prefix in REDIRECTION_PREFIXES:
            if tok.startswith(prefix) and len(tok) > len(prefix):
                target = clean_bash_path_token(tok[len(prefix) :])
                break

    if target.startswith("&"):
        return ""
    return target


def is_tee_command(token: str) -> bool:
    return bool(token) and posixpath.basename(token) == "tee"


def extract_tee_targets(args: list[str]) -> list[str]:
    """Return non-flag tokens after tee, up to the next command boundary.

    Redirections (and the token an exact operator consumes) are skipped;
    the redirection pass reports their targets.
    """
    targets = []
    skip_next = False
    for tok in args:
        if tok in COMMAND_BOUNDARIES:
            break
        if skip_next:
            skip_next = False
            continue
        if tok in REDIRECTION_OPERATORS:
            skip_next = True
            continue
        if tok.startswith("-") or tok.startswith(REDIRECTION_PREFIXES):
            continue
        target = clean_bash_path_token(tok)
        if target:
            targets.append(target)
    return targets


def extract_bash_write_targets(command: str) -> list[str]:
    """Extract likely file write targets from a bash command line.

    Composes three passes over the token stream: in-place editors,
    redirections, and tee.

    Args:
        command: The bash command line.

    Returns:
        Candidate paths in discovery order (duplicates kept).
    """
    if not command:
        return []

    tokens = tokenize_bash_command(command)
    if not tokens:
        return []

    targets = extract_in_place_editor_targets(tokens)

    for i, tok in enumerate(tokens):
        target = extract_redirection_target(tokens, i)
        if target:
            targets.append(target)

        if is_tee_command(tok):
            targets.extend(extract_tee_targets(tokens[i + 1 :]))

    return targets
