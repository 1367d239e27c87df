"""
Test 9: Faults (querykit/faults/)

Fault base class, domains, severities and the concrete fault types.
"""

import pytest

from querykit.faults import (
    DOMAIN_DEFAULTS,
    BuilderFault,
    CompilationFault,
    ConfigFault,
    ConfigInvalidFault,
    ConnectionLostFault,
    ConstraintViolationFault,
    DataRangeFault,
    DriverFault,
    Fault,
    FaultDomain,
    LockTimeoutFault,
    ObjectNotFoundFault,
    PermissionDeniedFault,
    QueryExecutionFault,
    QueryTimeoutFault,
    Severity,
    SQLSyntaxFault,
    TransactionStateFault,
    UnsupportedDriverFault,
    ValidationFault,
)


# ============================================================================
# Core
# ============================================================================

class TestSeverity:

    def test_values(self):
        assert Severity.INFO == "info"
        assert Severity.WARN == "warn"
        assert Severity.ERROR == "error"
        assert Severity.FATAL == "fatal"


class TestFaultDomain:

    def test_standard_domains(self):
        assert FaultDomain.CONFIG.name == "config"
        assert FaultDomain.BUILDER.name == "builder"
        assert FaultDomain.DRIVER.name == "driver"
        assert FaultDomain.TRANSACTION.name == "transaction"

    def test_domain_equality(self):
        assert FaultDomain("driver") == FaultDomain.DRIVER
        assert FaultDomain.DRIVER == "driver"
        assert hash(FaultDomain("driver")) == hash(FaultDomain.DRIVER)

    def test_defaults(self):
        assert DOMAIN_DEFAULTS[FaultDomain.CONFIG]["severity"] == Severity.FATAL
        assert DOMAIN_DEFAULTS[FaultDomain.DRIVER]["retryable"] is False


class TestFault:

    def test_basic(self):
        fault = Fault(code="X", message="broken", domain=FaultDomain.DRIVER)
        assert fault.severity == Severity.ERROR
        assert fault.retryable is False
        assert str(fault) == "[X] broken"
        assert fault.metadata == {}

    def test_requires_code_message_domain(self):
        with pytest.raises(TypeError):
            Fault(code="X", message="m")

    def test_to_dict(self):
        fault = Fault(
            code="X", message="m", domain=FaultDomain.BUILDER,
            severity=Severity.WARN, retryable=True, metadata={"a": 1},
        )
        assert fault.to_dict() == {
            "code": "X",
            "message": "m",
            "domain": "builder",
            "severity": "warn",
            "retryable": True,
            "public": False,
            "metadata": {"a": 1},
        }

    def test_repr(self):
        assert "ValidationFault" in repr(ValidationFault("bad"))


# ============================================================================
# Domain faults
# ============================================================================

class TestConfigFaults:

    def test_invalid(self):
        fault = ConfigInvalidFault("max_joins", "must not be negative")
        assert isinstance(fault, ConfigFault)
        assert fault.code == "CONFIG_INVALID"
        assert fault.severity == Severity.FATAL
        assert fault.metadata == {"key": "max_joins", "reason": "must not be negative"}

    def test_unsupported_driver(self):
        fault = UnsupportedDriverFault("sqlite", supported=["mysql"])
        assert fault.code == "UNSUPPORTED_DRIVER"
        assert fault.key == "driver"
        assert "sqlite" in fault.message
        assert fault.metadata["supported"] == ["mysql"]


class TestBuilderFaults:

    def test_validation(self):
        fault = ValidationFault("bad operator", field="operator")
        assert isinstance(fault, BuilderFault)
        assert fault.code == "QUERY_VALIDATION"
        assert fault.domain == FaultDomain.BUILDER
        assert fault.field == "operator"
        assert str(fault) == "[QUERY_VALIDATION] bad operator"

    def test_compilation(self):
        fault = CompilationFault("no table")
        assert fault.code == "QUERY_COMPILATION"
        assert fault.reason == "no table"


class TestDriverFaults:

    @pytest.mark.parametrize("fault_cls,kind,code,retryable", [
        (ObjectNotFoundFault, "object_not_found", "OBJECT_NOT_FOUND", False),
        (ConstraintViolationFault, "constraint_violation", "CONSTRAINT_VIOLATION", False),
        (SQLSyntaxFault, "syntax_error", "SQL_SYNTAX", False),
        (PermissionDeniedFault, "permission_denied", "PERMISSION_DENIED", False),
        (ConnectionLostFault, "connection", "CONNECTION_LOST", True),
        (LockTimeoutFault, "lock_timeout", "LOCK_TIMEOUT", True),
        (DataRangeFault, "data_range", "DATA_RANGE", False),
    ])
    def test_taxonomy(self, fault_cls, kind, code, retryable):
        fault = fault_cls("mysql", "boom", backend_code=1)
        assert isinstance(fault, QueryExecutionFault)
        assert isinstance(fault, DriverFault)
        assert fault.kind == kind
        assert fault.code == code
        assert fault.retryable is retryable
        assert fault.metadata["kind"] == kind
        assert fault.message == f"mysql query failed ({kind}): boom"

    def test_execution_details(self):
        fault = QueryExecutionFault(
            "postgres", "dup", backend_code="23505", sql="INSERT", column="email",
            value="a", constraint="uq", metadata={"schema": "public"},
        )
        assert fault.kind == "unknown"
        assert fault.code == "QUERY_FAILED"
        assert fault.metadata["schema"] == "public"
        assert fault.metadata["column"] == "email"
        assert (fault.column, fault.value, fault.constraint) == ("email", "a", "uq")

    def test_kind_override(self):
        assert QueryExecutionFault("mysql", "x", kind="custom").kind == "custom"

    def test_timeout(self):
        fault = QueryTimeoutFault(50, "SELECT 1")
        assert fault.code == "QUERY_TIMEOUT"
        assert fault.severity == Severity.WARN
        assert fault.retryable
        assert fault.timeout_ms == 50
        assert fault.metadata["sql"] == "SELECT 1"


class TestTransactionFaults:

    def test_state(self):
        fault = TransactionStateFault("commit", "no active transaction")
        assert fault.domain == FaultDomain.TRANSACTION
        assert fault.message == "Cannot commit transaction: no active transaction"
        assert fault.operation == "commit"
