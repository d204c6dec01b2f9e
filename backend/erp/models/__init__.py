from .auth import (
    Branch, Role, User, UserBranch, PermissionScope, RolePermission, UserPermissionOverride, SessionToken,
)
from .approvals import ApprovalPolicy, ApprovalRequest
from .activity import ActivityLog
from .master_data import (
    Uom, UomConversion, ProductGroup, ProductGroupItemType, ProductSubgroup, ProductSubgroupItemType,
    ProductType, Size, SizeItemType, Color, Grade, PackingType, City, PartyGroup, AccountGroup, Department,
    Account, AccountBranch, Party, PartyBranch, Item, ItemUsage, RmPurchaseRate, Variant, Sku, Labour,
)
from .bom import BomHeader, BomRmLine, BomSfgLine, BomLabourLine, BomVariantRule, BomChangeLog

__all__ = [
    'Branch', 'Role', 'User', 'UserBranch', 'PermissionScope', 'RolePermission',
    'UserPermissionOverride', 'SessionToken',
    'ApprovalPolicy', 'ApprovalRequest',
    'ActivityLog',
    'Uom', 'UomConversion', 'ProductGroup', 'ProductGroupItemType', 'ProductSubgroup',
    'ProductSubgroupItemType', 'ProductType', 'Size', 'SizeItemType', 'Color', 'Grade',
    'PackingType', 'City', 'PartyGroup', 'AccountGroup', 'Department',
    'Account', 'AccountBranch', 'Party', 'PartyBranch',
    'Item', 'ItemUsage', 'RmPurchaseRate', 'Variant', 'Sku', 'Labour',
    'BomHeader', 'BomRmLine', 'BomSfgLine', 'BomLabourLine', 'BomVariantRule', 'BomChangeLog',
]
