"""Built-in detectors, one module per family.

Discovered by ``DetectorRegistry.discover()``; each concrete
``BaseDetector`` subclass found here is registered under its CLASS_ID.
"""

from acctscan.analyzer.detectors.access_control import (
    OwnerProgramCheckDetector,
    SignerAuthorizationDetector,
)
from acctscan.analyzer.detectors.account_lifecycle import (
    InsecureAccountCloseDetector,
    ReinitializationAndFrontrunDetector,
)
from acctscan.analyzer.detectors.account_matching import (
    DuplicateMutableAccountsDetector,
    TypeDiscriminatorConfusionDetector,
)
from acctscan.analyzer.detectors.arithmetic import UncheckedArithmeticDetector
from acctscan.analyzer.detectors.cpi import ArbitraryCpiDetector
from acctscan.analyzer.detectors.pda import NonCanonicalAddressDerivationDetector

__all__ = [
    "ArbitraryCpiDetector",
    "DuplicateMutableAccountsDetector",
    "InsecureAccountCloseDetector",
    "NonCanonicalAddressDerivationDetector",
    "OwnerProgramCheckDetector",
    "ReinitializationAndFrontrunDetector",
    "SignerAuthorizationDetector",
    "TypeDiscriminatorConfusionDetector",
    "UncheckedArithmeticDetector",
]
