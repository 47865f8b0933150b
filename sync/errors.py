# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync error taxonomy
"""


class SetupError(Exception):
    """The run cannot start: bad caller, missing connection, or malformed request"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class SyncAlreadyRunningError(Exception):
    """Another run holds the same progress key in this process"""
