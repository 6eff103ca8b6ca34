# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Template Module

Loads the foundation CloudFormation template, validates its declared
parameters and derives the import-only template used for resource import.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Set

import yaml

from .exceptions import PreconditionError

logger = logging.getLogger(__name__)

_SUB_NAME = re.compile(r"\$\{([^}!][^}]*)\}")


class CFNLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short-form intrinsics"""


def _construct_intrinsic(loader, tag_suffix, node):
    name = "Ref" if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if tag_suffix == "GetAtt":
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


CFNLoader.add_multi_constructor("!", _construct_intrinsic)


class FoundationTemplate:
    """A parsed template together with its original body"""

    def __init__(self, body: str, source: str = "<string>"):
        self.body = body
        self.source = source
        try:
            document = yaml.load(body, Loader=CFNLoader)
        except yaml.YAMLError as e:
            raise PreconditionError(f"Failed to parse template {source}: {e}") from e
        if not isinstance(document, dict) or not isinstance(
            document.get("Resources"), dict
        ):
            raise PreconditionError(f"Template {source} declares no Resources")
        self.document: Dict = document

    @classmethod
    def load(cls, path) -> "FoundationTemplate":
        template_file = Path(path)
        if not template_file.exists():
            raise PreconditionError(
                f"Template not found: {path}",
                hint="Add bootstrap.yaml at the repository root or pass --template-file",
            )
        logger.info(f"Loading template: {template_file}")
        return cls(template_file.read_text(encoding="utf-8"), source=str(template_file))

    @property
    def parameters(self) -> Dict:
        return self.document.get("Parameters") or {}

    @property
    def resources(self) -> Dict:
        return self.document["Resources"]

    def validate_parameters(self, keys: Iterable[str]) -> None:
        """Raise PreconditionError unless every key is a declared parameter"""
        missing = sorted(set(keys) - set(self.parameters))
        if missing:
            raise PreconditionError(
                f"Template {self.source} does not declare parameters: {', '.join(missing)}"
            )

    def import_template(self, logical_ids: Iterable[str]) -> str:
        """
        Derive the body used for an IMPORT change set.

        CloudFormation cannot create resources during an import, so the
        derived template keeps only the imported resources and no outputs.
        Properties and DependsOn entries pointing at resources outside the
        import are dropped; the update that follows the import restores them.
        Every imported resource must carry a DeletionPolicy; Retain is used
        when the template does not set one.

        Args:
            logical_ids: Logical ids of the resources being imported

        Returns:
            Template body as JSON
        """
        logical_ids = list(logical_ids)
        unknown = [lid for lid in logical_ids if lid not in self.resources]
        if unknown:
            raise PreconditionError(
                f"Template {self.source} does not declare resources: {', '.join(unknown)}"
            )

        excluded = set(self.resources) - set(logical_ids)
        document = {k: v for k, v in self.document.items() if k != "Outputs"}
        resources = {}
        for logical_id in logical_ids:
            resource = dict(self.resources[logical_id])
            properties = resource.get("Properties") or {}
            dropped = [k for k, v in properties.items() if _references(v) & excluded]
            if dropped:
                logger.info(f"Import of {logical_id} defers properties: {', '.join(dropped)}")
                resource["Properties"] = {
                    k: v for k, v in properties.items() if k not in dropped
                }
            if "DependsOn" in resource:
                depends_on = resource["DependsOn"]
                if isinstance(depends_on, str):
                    depends_on = [depends_on]
                depends_on = [d for d in depends_on if d not in excluded]
                if depends_on:
                    resource["DependsOn"] = depends_on
                else:
                    del resource["DependsOn"]
            resource.setdefault("DeletionPolicy", "Retain")
            resources[logical_id] = resource
        document["Resources"] = resources
        return json.dumps(document, default=str)


def _references(value) -> Set[str]:
    """Logical ids referenced by Ref, Fn::GetAtt and Fn::Sub within a value"""
    found: Set[str] = set()
    if isinstance(value, dict):
        for key, item in value.items():
            if key == "Ref" and isinstance(item, str):
                found.add(item)
            elif key == "Fn::GetAtt":
                target = item.split(".", 1) if isinstance(item, str) else item
                if target and isinstance(target[0], str):
                    found.add(target[0])
            elif key == "Fn::Sub":
                text = item[0] if isinstance(item, list) and item else item
                if isinstance(text, str):
                    found.update(name.split(".", 1)[0] for name in _SUB_NAME.findall(text))
                if isinstance(item, list) and len(item) > 1:
                    found.update(_references(item[1]))
            else:
                found.update(_references(item))
    elif isinstance(value, list):
        for item in value:
            found.update(_references(item))
    return found
