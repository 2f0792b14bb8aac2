#!/usr/bin/env python3
from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path
from typing import Any

import yaml

MODEL_CONSTANTS = ("GROUP", "VERSION", "KIND", "PLURAL")
SHORT_NAME = "doc"
SPEC_FIELD_TYPES = {"title": "string", "hide": "boolean", "content": "string"}
STATUS_FIELD_TYPES = {"hidden": "boolean"}


def _parse_args() -> argparse.Namespace:
    repo_root = Path(__file__).resolve().parents[1]
    parser = argparse.ArgumentParser(
        description="Validate that the Document CRD manifest matches the controller's resource model"
    )
    parser.add_argument("--crd", type=Path, default=repo_root / "yaml" / "crd.yaml")
    parser.add_argument(
        "--model",
        type=Path,
        default=repo_root / "controller" / "src" / "document.py",
    )
    return parser.parse_args()


def _load_model_constants(source_path: Path) -> dict[str, str]:
    constants: dict[str, str] = {}
    for line in source_path.read_text(encoding="utf-8").splitlines():
        for name in MODEL_CONSTANTS:
            match = re.match(rf"^{name}\s*=\s*\"([^\"]+)\"$", line.strip())
            if match:
                constants[name] = match.group(1)
    missing = [name for name in MODEL_CONSTANTS if name not in constants]
    if missing:
        raise ValueError(f"{source_path}: missing constants {', '.join(missing)}")
    return constants


def _load_crd(path: Path) -> dict[str, Any]:
    docs = [doc for doc in yaml.safe_load_all(path.read_text(encoding="utf-8")) if doc]
    if len(docs) != 1 or not isinstance(docs[0], dict):
        raise ValueError(f"{path}: expected exactly one YAML document")
    return docs[0]


def _check_properties(
    schema: dict[str, Any], section: str, expected: dict[str, str]
) -> list[str]:
    errors: list[str] = []
    properties = (schema.get("properties") or {}).get(section, {}).get("properties") or {}
    for field, type_name in expected.items():
        actual = (properties.get(field) or {}).get("type")
        if actual != type_name:
            errors.append(f"{section}.{field} must have type {type_name}, got: {actual!r}")
    return errors


def validate_crd(crd: dict[str, Any], constants: dict[str, str]) -> list[str]:
    errors: list[str] = []
    if crd.get("kind") != "CustomResourceDefinition":
        errors.append(f"kind must be CustomResourceDefinition, got: {crd.get('kind')!r}")

    spec = crd.get("spec") or {}
    names = spec.get("names") or {}
    expected_name = f"{constants['PLURAL']}.{constants['GROUP']}"
    if (crd.get("metadata") or {}).get("name") != expected_name:
        errors.append(f"metadata.name must be {expected_name}")
    if spec.get("group") != constants["GROUP"]:
        errors.append(f"spec.group must be {constants['GROUP']}, got: {spec.get('group')!r}")
    if names.get("kind") != constants["KIND"]:
        errors.append(f"spec.names.kind must be {constants['KIND']}, got: {names.get('kind')!r}")
    if names.get("plural") != constants["PLURAL"]:
        errors.append(
            f"spec.names.plural must be {constants['PLURAL']}, got: {names.get('plural')!r}"
        )
    if SHORT_NAME not in (names.get("shortNames") or []):
        errors.append(f"spec.names.shortNames must include {SHORT_NAME}")
    if spec.get("scope") != "Namespaced":
        errors.append("spec.scope must be Namespaced (the reconciler requires a namespace)")

    versions = [v for v in spec.get("versions") or [] if v.get("name") == constants["VERSION"]]
    if not versions:
        errors.append(f"spec.versions must include {constants['VERSION']}")
        return errors

    version = versions[0]
    if not version.get("served") or not version.get("storage"):
        errors.append(f"version {constants['VERSION']} must be served and stored")
    if "status" not in (version.get("subresources") or {}):
        errors.append("status subresource must be enabled for status patches")

    schema = (version.get("schema") or {}).get("openAPIV3Schema") or {}
    errors.extend(_check_properties(schema, "spec", SPEC_FIELD_TYPES))
    errors.extend(_check_properties(schema, "status", STATUS_FIELD_TYPES))
    return errors


def main() -> int:
    args = _parse_args()
    try:
        constants = _load_model_constants(args.model)
        crd = _load_crd(args.crd)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"CRD validation failed: {exc}", file=sys.stderr)
        return 1

    errors = validate_crd(crd, constants)
    if errors:
        print("CRD validation failed:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    print("CRD validation passed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
