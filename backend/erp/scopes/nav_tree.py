# Overview: Static navigation tree; every MODULE owns the SCREEN scopes beneath it.
# Group nodes only organise the menu and carry no scope of their own.

from .categories import ScopeType


def _screen(scope_key: str, label: str, route: str) -> dict:
    return {"scope_type": ScopeType.SCREEN, "scope_key": scope_key, "label": label, "route": route}


def _group(key: str, children: list) -> dict:
    return {"key": key, "children": children}


def _module(key: str, label: str, children: list) -> dict:
    return {"scope_type": ScopeType.MODULE, "scope_key": key, "label": label, "children": children}


NAV_TREE = [
    _module("administration", "Administration", [
        _group("setup", [
            _screen("administration.branches", "Branches", "/administration/branches"),
            _screen("administration.users", "Users", "/administration/users"),
            _screen("administration.roles", "Roles", "/administration/roles"),
            _screen("administration.permissions", "Permissions", "/administration/permissions"),
        ]),
        _group("approvals", [
            _screen("administration.approvals", "Approvals", "/administration/approvals"),
            _screen("administration.approval_settings", "Approval Settings", "/administration/approvals/settings"),
            _screen("administration.audit_logs", "Audit Logs", "/administration/audit-logs"),
        ]),
    ]),
    _module("master_data", "Master Data", [
        _group("basic_information", [
            _screen("master_data.basic_info.units", "Units", "/master-data/basic-info/units"),
            _group("groups", [
                _group("products", [
                    _screen("master_data.basic_info.product_groups", "Product Groups", "/master-data/basic-info/product-groups"),
                    _screen("master_data.basic_info.product_subgroups", "Product Subgroups", "/master-data/basic-info/product-subgroups"),
                    _screen("master_data.basic_info.product_types", "Product Types", "/master-data/basic-info/product-types"),
                ]),
                _screen("master_data.basic_info.party_groups", "Party Groups", "/master-data/basic-info/party-groups"),
                _screen("master_data.basic_info.account_groups", "Account Groups", "/master-data/basic-info/account-groups"),
                _screen("master_data.basic_info.departments", "Departments", "/master-data/basic-info/departments"),
            ]),
            _screen("master_data.basic_info.sizes", "Sizes", "/master-data/basic-info/sizes"),
            _screen("master_data.basic_info.colors", "Colors", "/master-data/basic-info/colors"),
            _screen("master_data.basic_info.grades", "Grades", "/master-data/basic-info/grades"),
            _screen("master_data.basic_info.packing_types", "Packing Types", "/master-data/basic-info/packing-types"),
            _screen("master_data.basic_info.cities", "Cities", "/master-data/basic-info/cities"),
            _screen("master_data.basic_info.uom_conversions", "UOM Conversions", "/master-data/basic-info/uom-conversions"),
        ]),
        _group("accounts_parties", [
            _screen("master_data.accounts", "Accounts", "/master-data/accounts"),
            _screen("master_data.parties", "Parties", "/master-data/parties"),
        ]),
        _group("products", [
            _screen("master_data.products.finished", "Finished Goods", "/master-data/products/finished"),
            _screen("master_data.products.semi_finished", "Semi-Finished Goods", "/master-data/products/semi-finished"),
            _screen("master_data.products.raw_materials", "Raw Materials", "/master-data/products/raw-materials"),
            _screen("master_data.products.skus", "SKUs", "/master-data/products/skus"),
        ]),
        _group("bom", [
            _screen("master_data.bom", "Bill of Materials", "/master-data/bom"),
            _screen("master_data.bom.approval", "BOM Approval", "/master-data/bom/approval"),
        ]),
    ]),
    _module("hr_payroll", "HR & Payroll", [
        _screen("hr_payroll.employees", "Employees", "/master-data/hr-payroll/employees"),
        _screen("hr_payroll.commissions", "Sales Commission", "/master-data/hr-payroll/commission"),
        _screen("hr_payroll.allowances", "Allowances", "/master-data/hr-payroll/allowances"),
        _group("labours", [
            _screen("hr_payroll.labours", "Labours", "/master-data/hr-payroll/labours"),
            _screen("hr_payroll.labour_rates", "Labour Rates", "/master-data/hr-payroll/labour-rates"),
        ]),
    ]),
    _module("financial", "Financial", []),
    _module("purchase", "Purchase", []),
    _module("production", "Production", []),
    _module("inventory", "Inventory", []),
    _module("outward_returnable", "Outward & Returnable", []),
    _module("sales", "Sales", []),
]


# Retired scope keys still present in older grants; the resolver falls back to them
LEGACY_SCOPE_ALIASES = {
    "administration.branches": "setup:branches",
    "administration.users": "setup:users",
    "administration.roles": "setup:roles",
}
