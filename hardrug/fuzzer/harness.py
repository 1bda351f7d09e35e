"""Invariant harness synthesis for Foundry.

Two transformations over a classified contract:
  1. Constructor injection: the entry contract's constructor is extended
     (or synthesized) so every deployment mints a known supply to, and
     hands ownership to, the deploying test contract.
  2. Invariant test generation: one self-contained Foundry test contract
     per rug-pull technique the profile makes testable. Each test deploys
     its own instance of the entry contract and owns one property.

Output is a single Solidity compilation unit (injected source followed by
the tests) written to ``test/test.sol`` by the executor. The tests import
``forge-std/Test.sol``, so sources pinned below 0.6.2 cannot be verified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from hardrug.analyzer.classifier import ContractProfile
from hardrug.analyzer.constructor import DecodedArgument
from hardrug.ingestion.solidity_compiler import detect_version, version_tuple

logger = logging.getLogger(__name__)

MINT_FUNCTION = "_mint"
MINT_AMOUNT = "1000000000000000000000000"
FORGE_STD_IMPORT = 'import "forge-std/Test.sol";'

TEST_PREFIX = "Dynamic"
TEST_SUFFIX = "Test"

# Actors are fixed, low, non-precompile addresses so fuzzed senders never collide
BUYER = "address(0x10001)"
RECIPIENT = "address(0x10002)"
HOLDER = "address(0x10003)"
THIRD_PARTY = "address(0x10004)"
NEW_OWNER = "address(0x10005)"


class Technique:
    HONEYPOT = "Honeypot"
    HIDDEN_MINT = "HiddenMint"
    HIDDEN_TRANSFER = "HiddenTransfer"
    HIDDEN_FEE_MODIFIER = "HiddenFeeModifier"
    HIDDEN_TRANSFER_REVERT = "HiddenTransferRevert"
    FAKE_OWNERSHIP_RENOUNCE = "FakeOwnershipRenounce"

    TOKEN = (
        HONEYPOT,
        HIDDEN_MINT,
        HIDDEN_TRANSFER,
        HIDDEN_FEE_MODIFIER,
        HIDDEN_TRANSFER_REVERT,
    )
    OWNABLE = (FAKE_OWNERSHIP_RENOUNCE,)


def harness_contract_name(technique: str) -> str:
    return f"{TEST_PREFIX}{technique}{TEST_SUFFIX}"


def technique_from_test_name(name: str) -> str:
    """``DynamicHiddenMintTest`` -> ``HIDDENMINT``."""
    if name.startswith(TEST_PREFIX):
        name = name[len(TEST_PREFIX):]
    if name.endswith(TEST_SUFFIX):
        name = name[: -len(TEST_SUFFIX)]
    return name.upper()


# ── Data Models ──────────────────────────────────────────────────────────────


@dataclass
class InjectionPlan:
    """Where and what to splice into the entry contract.

    ``offset`` is a byte offset into the UTF-8 encoded source, pointing at
    the closing brace of either the contract body (a constructor is
    synthesized) or the existing constructor body (statements are appended).
    """
    offset: int
    code: str
    synthesized_constructor: bool = False
    line: int = 0

    def apply(self, source: str) -> str:
        if not self.code:
            return source
        raw = source.encode("utf-8")
        spliced = raw[: self.offset] + self.code.encode("utf-8") + raw[self.offset:]
        return spliced.decode("utf-8")


@dataclass
class InvariantTest:
    technique: str
    contract_name: str
    source: str


@dataclass
class TestSuite:
    """Named invariant-test contracts targeting one entry contract."""
    entry_contract: str
    tests: list[InvariantTest] = field(default_factory=list)

    __test__ = False

    @property
    def names(self) -> list[str]:
        return [t.contract_name for t in self.tests]

    @property
    def techniques(self) -> list[str]:
        return [t.technique for t in self.tests]

    def render(self) -> str:
        return "\n".join(t.source for t in self.tests)

    def __bool__(self) -> bool:
        return bool(self.tests)


@dataclass
class Harness:
    """Injected source plus its test suite, ready to hand to the executor."""
    injected_source: str
    suite: TestSuite
    plan: InjectionPlan | None = None

    def render(self) -> str:
        return f"{self.injected_source.rstrip()}\n\n{self.suite.render()}"


# ── Synthesizer ──────────────────────────────────────────────────────────────


class HarnessSynthesizer:
    """Build the injected source and invariant tests for a profile."""

    def __init__(
        self,
        profile: ContractProfile,
        arguments: list[DecodedArgument] | None = None,
    ) -> None:
        self.profile = profile
        self.arguments = arguments or []
        self.entry = profile.entry.name

    def synthesize(self) -> Harness:
        plan = self.plan_injection()
        injected = plan.apply(self.profile.source) if plan else self.profile.source
        injected = f"{injected.rstrip()}\n\n{FORGE_STD_IMPORT}\n"
        suite = self.build_suite()
        logger.debug(
            "Synthesized %d invariant tests for %s (constructor %s)",
            len(suite.tests), self.entry,
            "synthesized" if plan and plan.synthesized_constructor else "extended",
        )
        return Harness(injected_source=injected, suite=suite, plan=plan)

    # ── Constructor injection ────────────────────────────────────────

    def injected_statements(self) -> list[str]:
        statements = []
        if self.profile.is_token_contract and self.profile.has_function(MINT_FUNCTION):
            statements.append(f"{MINT_FUNCTION}(msg.sender, {MINT_AMOUNT});")
        if self.profile.is_ownable_contract:
            statements.append("transferOwnership(msg.sender);")
        return statements

    def plan_injection(self) -> InjectionPlan | None:
        """Compute the splice for the entry contract, or ``None`` without spans."""
        source_bytes = self.profile.source.encode("utf-8")
        statements = self.injected_statements()
        constructor = self.profile.entry.constructor

        if constructor is None:
            span = self.profile.entry.span
            if span.length == 0:
                logger.warning("No source span for %s; skipping injection", self.entry)
                return None
            offset = span.end - 1
            body = "".join(f"        {s}\n" for s in statements)
            code = f"\n    {self._constructor_header()} {{\n{body}    }}\n"
            return InjectionPlan(
                offset=offset,
                code=code,
                synthesized_constructor=True,
                line=span.line_in(source_bytes),
            )

        body_span = constructor.body_span
        if body_span is None or body_span.length == 0:
            logger.warning("Constructor of %s has no body span; skipping injection", self.entry)
            return None
        offset = body_span.end - 1
        code = "".join(f"    {s}\n" for s in statements)
        return InjectionPlan(
            offset=offset,
            code=f"\n{code}" if code else "",
            line=source_bytes[:offset].count(b"\n") + 1,
        )

    def _constructor_header(self) -> str:
        version = detect_version(self.profile.source)
        if version is None:
            return "constructor()"
        if version_tuple(version) < (0, 7, 0):
            return "constructor() public"
        return "constructor()"

    # ── Test generation ──────────────────────────────────────────────

    def build_suite(self) -> TestSuite:
        suite = TestSuite(entry_contract=self.entry)
        if self.profile.is_token_contract:
            suite.tests.extend([
                self._honeypot_test(),
                self._hidden_mint_test(),
                self._hidden_transfer_test(),
                self._hidden_fee_modifier_test(),
                self._hidden_transfer_revert_test(),
            ])
        if self.profile.is_ownable_contract:
            suite.tests.append(self._fake_ownership_renounce_test())
        return suite

    def _deploy_block(self) -> str:
        lines: list[str] = []
        expressions: list[str] = []
        for i, argument in enumerate(self.arguments):
            setup, expression = argument.materialize(f"arg{i}")
            lines.extend(setup)
            expressions.append(expression)
        lines.append(f"target = new {self.entry}({', '.join(expressions)});")
        return "\n".join(f"        {line}" for line in lines)

    def _seed_function(self) -> str:
        fallback = ""
        if self.profile.has_balance_variable:
            fallback = """
        if (target.balanceOf(who) == 0) {
            deal(address(target), who, 10**23);
        }"""
        return f"""
    function _seed(address who) internal returns (uint256) {{
        uint256 amount = target.balanceOf(address(this)) / 10;
        if (amount > 0) {{
            try target.transfer(who, amount) {{}} catch {{}}
        }}{fallback}
        return target.balanceOf(who);
    }}
"""

    def _contract(self, technique: str, fields: str, setup: str, body: str) -> InvariantTest:
        name = harness_contract_name(technique)
        source = f"""
contract {name} is Test {{
    {self.entry} internal target;
    bool internal skipInvariant;
{fields}
    function setUp() public {{
{self._deploy_block()}
{setup}
        vm.warp(block.timestamp + 365 days);
    }}
{body}}}
"""
        return InvariantTest(technique=technique, contract_name=name, source=source)

    def _honeypot_test(self) -> InvariantTest:
        fields = f"""    address internal constant BUYER = {BUYER};
    address internal constant RECIPIENT = {RECIPIENT};
"""
        setup = """        skipInvariant = _seed(BUYER) == 0;
        excludeSender(BUYER);"""
        body = self._seed_function() + """
    function invariant_transferIncreasesRecipientBalance() public {
        if (skipInvariant) return;
        uint256 amount = target.balanceOf(BUYER) / 2;
        if (amount == 0) return;
        uint256 before = target.balanceOf(RECIPIENT);
        vm.prank(BUYER);
        try target.transfer(RECIPIENT, amount) {} catch {
            assertTrue(false, "buyer transfer reverted");
        }
        assertGt(target.balanceOf(RECIPIENT), before);
    }
"""
        return self._contract(Technique.HONEYPOT, fields, setup, body)

    def _hidden_mint_test(self) -> InvariantTest:
        fields = """    uint256 internal initialSupply;
"""
        setup = """        initialSupply = target.totalSupply();"""
        # Burns may shrink supply; only growth past the seeded supply is a mint
        body = """
    function invariant_totalSupplyDoesNotGrow() public {
        assertLe(target.totalSupply(), initialSupply);
    }
"""
        return self._contract(Technique.HIDDEN_MINT, fields, setup, body)

    def _hidden_transfer_test(self) -> InvariantTest:
        fields = f"""    address internal constant HOLDER = {HOLDER};
    address internal constant THIRD_PARTY = {THIRD_PARTY};
    uint256 internal recorded;
"""
        setup = """        uint256 seeded = _seed(HOLDER);
        if (seeded > 0) {
            vm.prank(HOLDER);
            try target.transfer(THIRD_PARTY, seeded / 2) {} catch {}
        }
        recorded = target.balanceOf(THIRD_PARTY);
        skipInvariant = recorded == 0;
        excludeSender(HOLDER);
        excludeSender(THIRD_PARTY);"""
        body = self._seed_function() + """
    function invariant_thirdPartyBalanceNotReduced() public {
        if (skipInvariant) return;
        assertGe(target.balanceOf(THIRD_PARTY), recorded);
    }
"""
        return self._contract(Technique.HIDDEN_TRANSFER, fields, setup, body)

    def _hidden_fee_modifier_test(self) -> InvariantTest:
        fields = f"""    address internal constant HOLDER = {HOLDER};
    address internal constant RECIPIENT = {RECIPIENT};
    uint256 internal initialFee;
"""
        setup = """        bool measured;
        if (_seed(HOLDER) > 0) {
            (initialFee, measured) = _measureFee();
        }
        skipInvariant = !measured;
        excludeSender(HOLDER);
        excludeSender(RECIPIENT);"""
        body = self._seed_function() + """
    function _measureFee() internal returns (uint256, bool) {
        uint256 amount = target.balanceOf(HOLDER) / 10;
        if (amount == 0) return (0, false);
        uint256 before = target.balanceOf(RECIPIENT);
        vm.prank(HOLDER);
        try target.transfer(RECIPIENT, amount) {} catch {
            return (0, false);
        }
        uint256 received = target.balanceOf(RECIPIENT) - before;
        if (received >= amount) return (0, true);
        // Fee in basis points of the amount sent
        return (((amount - received) * 10000) / amount, true);
    }

    function invariant_transferFeeUnchanged() public {
        if (skipInvariant) return;
        (uint256 fee, bool measured) = _measureFee();
        if (!measured) return;
        assertEq(fee, initialFee);
    }
"""
        return self._contract(Technique.HIDDEN_FEE_MODIFIER, fields, setup, body)

    def _hidden_transfer_revert_test(self) -> InvariantTest:
        fields = f"""    address internal constant HOLDER = {HOLDER};
    address internal constant RECIPIENT = {RECIPIENT};
"""
        setup = """        skipInvariant = _seed(HOLDER) == 0;
        excludeSender(HOLDER);"""
        body = self._seed_function() + """
    function invariant_holderCanTransferBalance() public {
        if (skipInvariant) return;
        uint256 balance = target.balanceOf(HOLDER);
        if (balance == 0) return;
        vm.prank(HOLDER);
        try target.transfer(RECIPIENT, balance) {} catch {
            assertTrue(false, "holder transfer reverted");
        }
    }
"""
        return self._contract(Technique.HIDDEN_TRANSFER_REVERT, fields, setup, body)

    def _fake_ownership_renounce_test(self) -> InvariantTest:
        fields = f"""    address internal constant NEW_OWNER = {NEW_OWNER};
"""
        setup = """        try target.transferOwnership(NEW_OWNER) {} catch {
            skipInvariant = true;
        }
        excludeSender(NEW_OWNER);"""
        body = """
    function invariant_ownershipNotReclaimed() public {
        if (skipInvariant) return;
        assertTrue(target.owner() != address(this), "deployer regained ownership");
    }
"""
        return self._contract(Technique.FAKE_OWNERSHIP_RENOUNCE, fields, setup, body)
