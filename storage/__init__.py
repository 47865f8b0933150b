# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

from storage.supabase_store import (
    SupabaseStore,
    StorageError,
    get_store,
    eq,
    in_,
    is_null,
    gte,
    lt,
)
