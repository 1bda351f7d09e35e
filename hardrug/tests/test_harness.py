"""Tests for hardrug.fuzzer.harness — constructor injection and invariant suites."""

from __future__ import annotations

from pathlib import Path

import pytest
import solcx
from eth_abi import encode
from solcx.exceptions import SolcError

from conftest import (
    PLAIN_SOURCE,
    array_of,
    constructor,
    contract,
    elementary,
    erc20_nodes,
    ownable_nodes,
    param,
    plain_ast,
    source_unit,
)
from hardrug.analyzer.classifier import ContractClassifier
from hardrug.analyzer.constructor import ConstructorDecoder
from hardrug.core.config import get_settings
from hardrug.fuzzer.harness import (
    FORGE_STD_IMPORT,
    MINT_AMOUNT,
    HarnessSynthesizer,
    InjectionPlan,
    Technique,
    harness_contract_name,
    technique_from_test_name,
)
from hardrug.ingestion.solidity_compiler import SolidityParser, version_tuple

TREASURY = "0xAb8483F64d9C6d1EcF9b849Ae677dD3315835cb2"


class TestInjectionPlan:
    def test_splice_uses_byte_offsets(self):
        plan = InjectionPlan(offset=len("é".encode("utf-8")), code="X")
        assert plan.apply("éa") == "éXa"

    def test_empty_code_is_noop(self):
        assert InjectionPlan(offset=0, code="").apply("contract A {}") == "contract A {}"


class TestConstructorInjection:
    def test_existing_constructor_extended(self, token_profile):
        harness = HarnessSynthesizer(token_profile).synthesize()
        injected = harness.injected_source
        assert not harness.plan.synthesized_constructor
        assert "constructor(uint256 supply, address treasury) {" in injected
        tail = injected.split("_mint(treasury, supply);", 1)[1]
        assert f"_mint(msg.sender, {MINT_AMOUNT});" in tail
        assert "transferOwnership(msg.sender);" in tail
        # Statements land inside the constructor, right before its closing brace
        assert injected.split("transferOwnership(msg.sender);\n", 1)[1].startswith("}\n}")

    def test_multibyte_characters_preserved(self, token_profile):
        injected = HarnessSynthesizer(token_profile).synthesize().injected_source
        assert "// Jéton: fixture with multi-byte characters (ü, ñ)" in injected
        assert injected.count("{") == injected.count("}")

    def test_plan_line_points_into_constructor(self, token_profile):
        plan = HarnessSynthesizer(token_profile).plan_injection()
        lines = token_profile.source.splitlines()
        assert lines[plan.line - 1].strip() == "}"
        assert "_mint(treasury, supply);" in lines[plan.line - 2]

    def test_constructor_synthesized_when_absent(self, plain_profile):
        harness = HarnessSynthesizer(plain_profile).synthesize()
        injected = harness.injected_source
        assert harness.plan.synthesized_constructor
        assert "constructor() {" in injected
        assert f"_mint(msg.sender, {MINT_AMOUNT});" in injected
        assert "transferOwnership" not in injected
        assert injected.count("{") == injected.count("}")

    def test_mint_requires_mint_function(self, classifier):
        profile = classifier.classify_ast(plain_ast(with_mint=False), PLAIN_SOURCE)
        harness = HarnessSynthesizer(profile).synthesize()
        assert "constructor() {" in harness.injected_source
        assert "_mint(msg.sender" not in harness.injected_source

    def test_legacy_pragma_header(self, classifier):
        source = PLAIN_SOURCE.replace("^0.8.19", "^0.6.12")
        profile = classifier.classify_ast(plain_ast(source), source)
        assert "constructor() public {" in HarnessSynthesizer(profile).synthesize().injected_source

    def test_missing_spans_skip_injection(self, classifier):
        profile = classifier.classify_ast(source_unit(contract("T", erc20_nodes())), "contract T {}")
        harness = HarnessSynthesizer(profile).synthesize()
        assert harness.plan is None
        assert harness.injected_source.startswith("contract T {}")

    def test_forge_std_import_appended(self, token_profile):
        injected = HarnessSynthesizer(token_profile).synthesize().injected_source
        assert injected.rstrip().endswith(FORGE_STD_IMPORT)


class TestSuiteGeneration:
    def test_token_and_ownable_suite(self, token_profile):
        suite = HarnessSynthesizer(token_profile).build_suite()
        assert suite.entry_contract == "Token"
        assert suite.techniques == [*Technique.TOKEN, *Technique.OWNABLE]
        assert suite.names[0] == "DynamicHoneypotTest"

    def test_token_only_suite(self, plain_profile):
        suite = HarnessSynthesizer(plain_profile).build_suite()
        assert suite.techniques == list(Technique.TOKEN)

    def test_ownable_only_suite(self, classifier):
        profile = classifier.classify_ast(source_unit(contract("Vault", ownable_nodes())))
        suite = HarnessSynthesizer(profile).build_suite()
        assert suite.names == ["DynamicFakeOwnershipRenounceTest"]

    def test_empty_suite_is_falsy(self, classifier):
        profile = classifier.classify_ast(source_unit(contract("Counter")))
        assert not HarnessSynthesizer(profile).build_suite()

    def test_test_names_round_trip(self):
        assert harness_contract_name(Technique.HIDDEN_MINT) == "DynamicHiddenMintTest"
        assert technique_from_test_name("DynamicHiddenMintTest") == "HIDDENMINT"
        assert technique_from_test_name("DynamicHoneypotTest") == "HONEYPOT"

    def test_each_test_targets_entry(self, token_profile):
        rendered = HarnessSynthesizer(token_profile).synthesize().render()
        assert rendered.count("Token internal target;") == 6
        assert "contract DynamicHiddenMintTest is Test {" in rendered
        assert "assertLe(target.totalSupply(), initialSupply);" in rendered
        assert "target.owner() != address(this)" in rendered

    def test_skip_flag_does_not_shadow_std_cheats(self, token_profile):
        rendered = HarnessSynthesizer(token_profile).synthesize().render()
        assert "bool internal skip;" not in rendered
        assert "skip =" not in rendered
        assert rendered.count("bool internal skipInvariant;") == 6
        assert rendered.count("if (skipInvariant) return;") == 5

    def test_time_advanced_after_deploy(self, plain_profile):
        rendered = HarnessSynthesizer(plain_profile).build_suite().render()
        assert rendered.count("vm.warp(block.timestamp + 365 days);") == 5


class TestDeployment:
    def test_decoded_arguments_in_setup(self, token_profile):
        blob = encode(["uint256", "address"], [1000, TREASURY])
        arguments = ConstructorDecoder(token_profile).decode(blob)
        rendered = HarnessSynthesizer(token_profile, arguments).build_suite().render()
        assert f"target = new Token(1000, {TREASURY});" in rendered

    def test_dynamic_array_materialized_before_deploy(self, classifier):
        ast = source_unit(contract("Airdrop", [
            constructor([param("wallets", array_of(elementary("address")))]),
            *erc20_nodes(),
        ]))
        profile = classifier.classify_ast(ast)
        arguments = ConstructorDecoder(profile).decode(encode(["address[]"], [[TREASURY]]))
        rendered = HarnessSynthesizer(profile, arguments).build_suite().render()
        setup = (
            "        address[] memory arg0 = new address[](1);\n"
            f"        arg0[0] = {TREASURY};\n"
            "        target = new Airdrop(arg0);"
        )
        assert setup in rendered

    def test_no_arguments(self, plain_profile):
        rendered = HarnessSynthesizer(plain_profile).build_suite().render()
        assert "target = new Plain();" in rendered

    def test_deal_fallback_with_balance_mapping(self, plain_profile):
        rendered = HarnessSynthesizer(plain_profile).build_suite().render()
        assert "deal(address(target), who, 10**23);" in rendered

    def test_no_deal_without_balance_mapping(self, classifier):
        nodes = [n for n in erc20_nodes() if n.get("name") != "_balances"]
        profile = classifier.classify_ast(source_unit(contract("T", nodes)))
        rendered = HarnessSynthesizer(profile).build_suite().render()
        assert "deal(" not in rendered
        assert "function _seed(address who)" in rendered


# ── Compilation against forge-std ────────────────────────────────────────────


COMPILABLE_SOURCE = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.19;

contract Owned {
    address private _owner;
    event OwnershipTransferred(address indexed previousOwner, address indexed newOwner);
    constructor() { _owner = msg.sender; }
    function owner() public view returns (address) { return _owner; }
    function transferOwnership(address newOwner) public {
        require(msg.sender == _owner, "not owner");
        emit OwnershipTransferred(_owner, newOwner);
        _owner = newOwner;
    }
}

contract BaseToken {
    mapping(address => uint256) internal _balances;
    mapping(address => mapping(address => uint256)) internal _allowances;
    uint256 internal _totalSupply;
    event Transfer(address indexed from, address indexed to, uint256 value);
    event Approval(address indexed owner, address indexed spender, uint256 value);
    function name() public pure returns (string memory) { return "Coin"; }
    function symbol() public pure returns (string memory) { return "COIN"; }
    function decimals() public pure returns (uint8) { return 18; }
    function totalSupply() public view returns (uint256) { return _totalSupply; }
    function balanceOf(address account) public view returns (uint256) { return _balances[account]; }
    function allowance(address holder, address spender) public view returns (uint256) {
        return _allowances[holder][spender];
    }
    function approve(address spender, uint256 amount) public returns (bool) {
        _allowances[msg.sender][spender] = amount;
        emit Approval(msg.sender, spender, amount);
        return true;
    }
    function transfer(address to, uint256 amount) public returns (bool) {
        _transfer(msg.sender, to, amount);
        return true;
    }
    function transferFrom(address from, address to, uint256 amount) public returns (bool) {
        _allowances[from][msg.sender] -= amount;
        _transfer(from, to, amount);
        return true;
    }
    function _transfer(address from, address to, uint256 amount) internal {
        _balances[from] -= amount;
        _balances[to] += amount;
        emit Transfer(from, to, amount);
    }
    function _mint(address to, uint256 amount) internal {
        _totalSupply += amount;
        _balances[to] += amount;
        emit Transfer(address(0), to, amount);
    }
}

contract Coin is BaseToken, Owned {
    constructor(uint256 supply) {
        _mint(msg.sender, supply);
    }
}
"""


def _installed_solc_08() -> str | None:
    versions = [str(v) for v in solcx.get_installed_solc_versions()]
    versions = [v for v in versions if (0, 8, 19) <= version_tuple(v) < (0, 9, 0)]
    return max(versions, key=version_tuple) if versions else None


def _forge_std_src() -> Path | None:
    src = Path(get_settings().forge_project_dir) / "lib" / "forge-std" / "src"
    return src.resolve() if (src / "Test.sol").is_file() else None


@pytest.mark.skipif(
    _installed_solc_08() is None or _forge_std_src() is None,
    reason="needs solc >=0.8.19 and an installed forge-std",
)
class TestHarnessCompiles:
    def test_rendered_harness_compiles(self):
        solc_version = _installed_solc_08()
        forge_std = _forge_std_src()
        profile = ContractClassifier(parser=SolidityParser(version=solc_version)).classify(COMPILABLE_SOURCE)
        assert profile.is_token_contract and profile.is_ownable_contract

        arguments = ConstructorDecoder(profile).decode(encode(["uint256"], [1000]))
        rendered = HarnessSynthesizer(profile, arguments).synthesize().render()

        standard_input = {
            "language": "Solidity",
            "sources": {"test/test.sol": {"content": rendered}},
            "settings": {
                "remappings": [f"forge-std/={forge_std}/"],
                "outputSelection": {"*": {"*": ["abi"]}},
            },
        }
        try:
            output = solcx.compile_standard(
                standard_input, solc_version=solc_version, allow_paths=[str(forge_std)],
            )
        except SolcError as e:
            pytest.fail(f"harness failed to compile: {e}")

        compiled = output["contracts"]["test/test.sol"]
        assert {"Coin", "DynamicHoneypotTest", "DynamicFakeOwnershipRenounceTest"} <= set(compiled)
