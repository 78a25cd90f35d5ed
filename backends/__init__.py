"""Built-in backends. Importing this package registers every provider type."""

from backends import (  # noqa: F401
    akeyless,
    aws,
    azure,
    bitwarden,
    doppler,
    gcp,
    infisical,
    local,
    onepassword,
    pass_store,
    vault,
)
