import pytest

from schema_lens.core import catalog as catalog_module
from schema_lens.core.catalog import CATALOG_NAMES, all_rules, fill, load_catalog, lookup
from schema_lens.core.errors import CatalogError


def test_bundled_catalogs_load():
    for name in CATALOG_NAMES:
        catalog = load_catalog(name)
        assert catalog.rules
        assert all(code.startswith(catalog.prefix) for code in catalog.rules)
        assert len(catalog.version) == 64


def test_codes_are_unique_across_catalogs():
    codes = [rule.code for rule in all_rules()]
    assert len(codes) == len(set(codes))


def test_every_rule_links_its_documentation():
    for rule in all_rules():
        assert rule.docs_url and rule.docs_url.startswith("https://"), rule.code


def test_lookup_by_code():
    rule = lookup("DSQL-TYPE-001")
    assert rule.severity == "error"
    assert rule.category == "column-type"
    assert rule.auto_fix.replacement_type
    assert lookup("DSQL-LIMIT-001").severity == "warning"
    assert lookup("CRDB_I600").severity == "info"
    assert lookup("NILE-TC-001").severity == "info"
    with pytest.raises(CatalogError):
        lookup("NOPE-001")
    with pytest.raises(CatalogError):
        load_catalog("dsql").lookup("CRDB_E100")


def test_type_maps_point_at_rules():
    dsql = load_catalog("dsql")
    assert dsql.type_rule("serial").code == "DSQL-TYPE-001"
    assert dsql.type_rule("jsonb").code == "DSQL-TYPE-002"
    assert dsql.type_rule("text") is None
    assert load_catalog("cockroachdb").type_rule("money").code == "CRDB_E001"


def test_fill_leaves_unknown_placeholders():
    assert fill('Extension "{extension}" in {table}', {"extension": "postgis"}) == 'Extension "postgis" in {table}'


def write_catalog(tmp_path, monkeypatch, name, text):
    monkeypatch.setattr(catalog_module, "RULES_DIR", tmp_path)
    (tmp_path / f"{name}.yaml").write_text(text)


@pytest.mark.parametrize(
    "name,text,message",
    [
        ("no_prefix", "rules: {}\n", "does not declare a prefix"),
        ("bad_prefix", "prefix: X-\nrules:\n  Y-001: {severity: error, category: index, message: m}\n",
         "does not carry"),
        ("bad_severity", "prefix: X-\nrules:\n  X-001: {severity: fatal, category: index, message: m}\n",
         "is invalid"),
        ("bad_docs", "prefix: X-\nrules:\n  X-001: {severity: error, category: index, message: m, docs: nowhere}\n",
         "docs key"),
        ("bad_ref", "prefix: X-\nrules: {}\nsql_patterns:\n  - {code: X-404, pattern: 'a'}\n",
         "undefined rule"),
        ("bad_regex", "prefix: X-\nrules:\n  X-001: {severity: error, category: index, message: m}\n"
         "sql_patterns:\n  - {code: X-001, pattern: '('}\n", "invalid pattern"),
        ("not_yaml", "prefix: [unclosed\n", "not valid YAML"),
        ("not_mapping", "- a\n- b\n", "must be a mapping"),
    ],
)
def test_malformed_catalogs_are_rejected(tmp_path, monkeypatch, name, text, message):
    write_catalog(tmp_path, monkeypatch, name, text)
    with pytest.raises(CatalogError, match=message):
        load_catalog(name)


def test_missing_catalog(tmp_path, monkeypatch):
    monkeypatch.setattr(catalog_module, "RULES_DIR", tmp_path)
    with pytest.raises(CatalogError, match="No rule catalog"):
        load_catalog("missing_for_test")
