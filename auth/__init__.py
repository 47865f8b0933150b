# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

from auth.token_vault import (
    TokenVault,
    VaultError,
    DecryptionError,
    KeyNotConfiguredError,
    CredentialError,
    RefreshError,
    derive_key,
    get_token_vault,
)
