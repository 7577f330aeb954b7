"""
Capability policy: roles and what each role may do.

WHY: One table decides authorization. Services and routes ask
policy_service.require_capability(user, CODE) once per operation instead of
comparing role strings inline.

DESIGN PRINCIPLES:
- Capabilities are granular (one operation per capability)
- Default role mappings follow principle of least privilege
- OWNER has every capability
"""

# =============================================================================
# ROLES
# =============================================================================

OWNER = "OWNER"
MANAGER = "MANAGER"
CASHIER = "CASHIER"

ROLES = (OWNER, MANAGER, CASHIER)

# Roles whose approval PIN can authorise shift closures and transfers
APPROVER_ROLES = frozenset({OWNER, MANAGER})


class CapabilityCategory:
    """Capability categories for organization."""
    SALES = "SALES"
    INVENTORY = "INVENTORY"
    REGISTERS = "REGISTERS"
    ACCOUNTING = "ACCOUNTING"


# =============================================================================
# CAPABILITY DEFINITIONS
# =============================================================================

# Each capability is defined as: (code, name, description, category)
CAPABILITY_DEFINITIONS = [
    (
        "CREATE_SALE",
        "Create Sale",
        "Ring up a sale at a till",
        CapabilityCategory.SALES
    ),
    (
        "SYNC_OFFLINE",
        "Sync Offline Sales",
        "Replay sales queued by a terminal while offline",
        CapabilityCategory.SALES
    ),
    (
        "VOID_SALE",
        "Void or Return Sale",
        "Void an invoice or take a full return, including refunds",
        CapabilityCategory.SALES
    ),
    (
        "MANAGE_SHIFT",
        "Manage Shift",
        "Open and close till shifts, record drawer movements",
        CapabilityCategory.REGISTERS
    ),
    (
        "REQUEST_TRANSFER",
        "Request Transfer",
        "Request stock to move between stores",
        CapabilityCategory.INVENTORY
    ),
    (
        "APPROVE_TRANSFER",
        "Approve Transfer",
        "Approve or cancel pending stock transfers",
        CapabilityCategory.INVENTORY
    ),
    (
        "RECEIVE_STOCK",
        "Receive Stock",
        "Record supplier purchases that bring stock in",
        CapabilityCategory.INVENTORY
    ),
    (
        "ADJUST_STOCK",
        "Adjust Stock",
        "Write stock off or back on outside a sale or purchase",
        CapabilityCategory.INVENTORY
    ),
    (
        "POST_JOURNAL",
        "Post Journal",
        "Post manual journal entries",
        CapabilityCategory.ACCOUNTING
    ),
    (
        "RECORD_EXPENSE",
        "Record Expense",
        "Record operating expenses and cash paid-outs",
        CapabilityCategory.ACCOUNTING
    ),
    (
        "VIEW_REPORTS",
        "View Reports",
        "Read balances, trial balance and shift summaries",
        CapabilityCategory.ACCOUNTING
    ),
]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

DEFAULT_ROLE_CAPABILITIES = {
    OWNER: [code for code, _, _, _ in CAPABILITY_DEFINITIONS],

    MANAGER: [
        "CREATE_SALE",
        "SYNC_OFFLINE",
        "VOID_SALE",
        "MANAGE_SHIFT",
        "REQUEST_TRANSFER",
        "APPROVE_TRANSFER",
        "RECEIVE_STOCK",
        "ADJUST_STOCK",
        "RECORD_EXPENSE",
        "VIEW_REPORTS",
    ],

    CASHIER: [
        "CREATE_SALE",
        "SYNC_OFFLINE",
        "MANAGE_SHIFT",
        "REQUEST_TRANSFER",
    ],
}


def get_all_capability_codes():
    """Get list of all capability codes."""
    return [code for code, _, _, _ in CAPABILITY_DEFINITIONS]


def get_capabilities_for_role(role):
    return frozenset(DEFAULT_ROLE_CAPABILITIES.get(role, ()))


def validate_capability_code(code):
    """Check if capability code is valid."""
    return code in get_all_capability_codes()
