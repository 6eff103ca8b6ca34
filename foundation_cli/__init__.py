# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Foundation CLI - Terraform state foundation deployer
"""

__version__ = "1.0.0"
