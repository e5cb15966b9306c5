"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for UI display
- Each user has exactly one role; the role decides the permission set
- Location scoping is separate (see services/access_service.py)
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    STOCK = "STOCK"
    DOCUMENTS = "DOCUMENTS"
    PROCUREMENT = "PROCUREMENT"
    PERIODS = "PERIODS"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # STOCK
    ("VIEW_STOCK", "View Stock", "View stock balances, WAC and stock value", PermissionCategory.STOCK),
    ("POST_DELIVERIES", "Post Deliveries", "Create, post and delete draft deliveries", PermissionCategory.STOCK),
    ("POST_ISSUES", "Post Issues", "Issue stock to a cost centre", PermissionCategory.STOCK),
    ("CREATE_TRANSFERS", "Create Transfers", "Request inter-location transfers", PermissionCategory.STOCK),
    ("APPROVE_TRANSFERS", "Approve Transfers", "Approve or reject pending transfers", PermissionCategory.STOCK),

    # DOCUMENTS
    ("VIEW_DOCUMENTS", "View Documents", "View deliveries, issues, transfers and NCRs", PermissionCategory.DOCUMENTS),
    ("MANAGE_NCRS", "Manage NCRs", "Raise manual NCRs and move them through their lifecycle", PermissionCategory.DOCUMENTS),
    ("ENTER_POB", "Enter POB", "Record daily persons-on-board counts", PermissionCategory.DOCUMENTS),

    # PROCUREMENT
    ("VIEW_PROCUREMENT", "View Procurement", "View PRFs and purchase orders", PermissionCategory.PROCUREMENT),
    ("CREATE_PRF", "Create PRF", "Create, edit, submit and clone purchase requests", PermissionCategory.PROCUREMENT),
    ("APPROVE_PRF", "Approve PRF", "Approve or reject submitted purchase requests", PermissionCategory.PROCUREMENT),
    ("MANAGE_PO", "Manage PO", "Create and edit purchase orders", PermissionCategory.PROCUREMENT),
    ("CLOSE_PO", "Close PO", "Close purchase orders with unfulfilled quantities", PermissionCategory.PROCUREMENT),

    # PERIODS
    ("VIEW_PERIODS", "View Periods", "View periods, prices and reconciliations", PermissionCategory.PERIODS),
    ("MANAGE_PERIODS", "Manage Periods", "Create, open and roll forward periods", PermissionCategory.PERIODS),
    ("MANAGE_PRICES", "Manage Prices", "Set and copy period-locked item prices", PermissionCategory.PERIODS),
    ("MANAGE_RECONCILIATION", "Manage Reconciliation", "Save reconciliations and mark locations ready", PermissionCategory.PERIODS),
    ("CLOSE_PERIODS", "Close Periods", "Request period close", PermissionCategory.PERIODS),
    ("APPROVE_PERIOD_CLOSE", "Approve Period Close", "Approve or reject a period close", PermissionCategory.PERIODS),

    # SYSTEM
    ("VIEW_APPROVALS", "View Approvals", "View the approval queue", PermissionCategory.SYSTEM),
    ("VIEW_AUDIT_LOG", "View Audit Log", "View the ledger of stock and workflow events", PermissionCategory.SYSTEM),
    ("VIEW_CONSOLIDATED", "View Consolidated Reports", "View stock and reconciliations across all locations", PermissionCategory.SYSTEM),
]


# =============================================================================
# ROLE PERMISSIONS
# =============================================================================

_VIEW = ["VIEW_STOCK", "VIEW_DOCUMENTS", "VIEW_PERIODS", "VIEW_PROCUREMENT"]

ROLE_PERMISSIONS = {
    "ADMIN": [perm[0] for perm in PERMISSION_DEFINITIONS],

    "SUPERVISOR": _VIEW + [
        "POST_DELIVERIES",
        "POST_ISSUES",
        "CREATE_TRANSFERS",
        "APPROVE_TRANSFERS",
        "MANAGE_NCRS",
        "ENTER_POB",
        "CREATE_PRF",
        "APPROVE_PRF",
        "CLOSE_PO",
        "MANAGE_RECONCILIATION",
        "VIEW_APPROVALS",
        "VIEW_AUDIT_LOG",
        "VIEW_CONSOLIDATED",
    ],

    "OPERATOR": _VIEW + [
        "POST_DELIVERIES",
        "POST_ISSUES",
        "CREATE_TRANSFERS",
        "MANAGE_NCRS",
        "ENTER_POB",
        "CREATE_PRF",
    ],

    "PROCUREMENT_SPECIALIST": _VIEW + [
        "CREATE_PRF",
        "MANAGE_PO",
        "MANAGE_NCRS",
    ],
}


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def get_role_permissions(role):
    return set(ROLE_PERMISSIONS.get(role, []))
