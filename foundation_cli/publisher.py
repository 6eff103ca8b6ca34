# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Configuration Publisher

Publishes the foundation stack outputs to SSM Parameter Store, where
downstream Terraform projects read them.
"""

import logging
from typing import Dict, List, Mapping, Optional

from botocore.exceptions import ClientError

from .aws import CLIENT_CONFIG
from .exceptions import PartialFailureError
from .models import ResourceFailure
from .naming import PARAMETER_PATHS

logger = logging.getLogger(__name__)


class ConfigurationPublisher:
    """Writes and removes the /terraform/foundation/* parameters"""

    def __init__(self, session, region: str):
        self.region = region
        self.ssm = session.client("ssm", region_name=region, config=CLIENT_CONFIG)

    def publish(
        self, outputs: Mapping[str, str], tags: Optional[Mapping[str, str]] = None
    ) -> List[str]:
        """
        Publish stack outputs

        Args:
            outputs: Stack outputs keyed by output key
            tags: Tags applied to each parameter

        Returns:
            Parameter names written
        """
        written = []
        failures = []
        tag_list = [{"Key": k, "Value": v} for k, v in (tags or {}).items() if v]

        for output_key, name in PARAMETER_PATHS.items():
            value = outputs.get(output_key)
            if not value:
                failures.append(
                    ResourceFailure(logical_id=name, reason=f"missing output {output_key}")
                )
                continue
            try:
                self.ssm.put_parameter(Name=name, Value=value, Type="String", Overwrite=True)
                if tag_list:
                    self.ssm.add_tags_to_resource(
                        ResourceType="Parameter", ResourceId=name, Tags=tag_list
                    )
                written.append(name)
                logger.info(f"Published {name} = {value}")
            except ClientError as e:
                logger.error(f"Error publishing {name}: {e}")
                failures.append(
                    ResourceFailure(
                        logical_id=name, resource_type="AWS::SSM::Parameter", reason=str(e)
                    )
                )

        if failures:
            raise PartialFailureError(
                f"Published {len(written)} of {len(PARAMETER_PATHS)} parameters",
                failures=failures,
            )
        return written

    def unpublish(self) -> List[str]:
        """Delete every foundation parameter; missing parameters are ignored"""
        names = list(PARAMETER_PATHS.values())
        response = self.ssm.delete_parameters(Names=names)
        deleted = response.get("DeletedParameters", [])
        logger.info(f"Removed parameters: {deleted}")
        return deleted

    def read(self) -> Dict[str, Optional[str]]:
        """Current values of the foundation parameters, None when absent"""
        names = list(PARAMETER_PATHS.values())
        response = self.ssm.get_parameters(Names=names)
        values: Dict[str, Optional[str]] = {name: None for name in names}
        for parameter in response.get("Parameters", []):
            values[parameter["Name"]] = parameter.get("Value")
        return values
