import pytest

from schema_lens.core.errors import ConfigError
from schema_lens.policy.config import DEFAULT_CONFIG_NAME, load_config
from schema_lens.policy.config_schema import ToolkitConfig


def test_missing_config_yields_defaults(tmp_path):
    assert load_config(None) == ToolkitConfig()
    cfg = load_config(str(tmp_path / DEFAULT_CONFIG_NAME))
    assert cfg.dialect == "postgres"
    assert cfg.hash_algorithm == "sha256"
    assert cfg.macaddr_replacement == "varchar(17)"
    assert cfg.camel_case is True


def test_config_file_is_read(tmp_path):
    path = tmp_path / DEFAULT_CONFIG_NAME
    path.write_text(
        "dialect: dsql\n"
        "import_path: '@acme/db'\n"
        "ignore_codes: [DSQL-TYPE-002]\n"
        "macaddr_replacement: text\n"
        "fail_on_error: true\n"
    )
    cfg = load_config(str(path))
    assert cfg.dialect == "dsql"
    assert cfg.import_path == "@acme/db"
    assert cfg.ignore_codes == ["DSQL-TYPE-002"]
    assert cfg.macaddr_replacement == "text"
    assert cfg.fail_on_error is True


def test_empty_config_is_defaults(tmp_path):
    path = tmp_path / DEFAULT_CONFIG_NAME
    path.write_text("")
    assert load_config(str(path)) == ToolkitConfig()


@pytest.mark.parametrize(
    "text,message",
    [
        ("dialect: [unclosed\n", "not valid YAML"),
        ("- dsql\n", "must be a mapping"),
        ("hash_algorithm: md5\n", "is invalid"),
        ("camel_case: maybe\n", "is invalid"),
    ],
)
def test_bad_config_raises(tmp_path, text, message):
    path = tmp_path / DEFAULT_CONFIG_NAME
    path.write_text(text)
    with pytest.raises(ConfigError, match=message):
        load_config(str(path))
