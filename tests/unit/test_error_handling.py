"""Tests for error handling across components."""

import logging

from opensearch_operator.exceptions import (
    ConfigurationError,
    DrainTimeout,
    InvalidSpec,
    KubernetesError,
    OperatorError,
    OwnershipConflict,
    TransientInfraError,
)
from opensearch_operator.logging_config import get_logger, setup_logging


def test_custom_exception_with_details():
    """Test that custom exceptions support message and details."""
    error = DrainTimeout("3 shards still on my-cluster-nodes-0", "Will retry on the next pass")

    assert error.message == "3 shards still on my-cluster-nodes-0"
    assert error.details == "Will retry on the next pass"
    assert "3 shards still on my-cluster-nodes-0" in str(error)
    assert "Will retry on the next pass" in str(error)


def test_custom_exception_without_details():
    """Test that custom exceptions work without details."""
    error = InvalidSpec("Cluster 'x' declares no node pools")

    assert error.message == "Cluster 'x' declares no node pools"
    assert error.details is None
    assert str(error) == "Cluster 'x' declares no node pools"


def test_exception_hierarchy():
    """Test that all custom exceptions inherit from OperatorError."""
    for cls in (
        InvalidSpec,
        TransientInfraError,
        DrainTimeout,
        OwnershipConflict,
        KubernetesError,
        ConfigurationError,
    ):
        assert issubclass(cls, OperatorError)


def test_ownership_conflict_message():
    error = OwnershipConflict("StatefulSet", "my-cluster-nodes", "other-uid")
    assert error.kind == "StatefulSet"
    assert error.owner_uid == "other-uid"
    assert error.message == "StatefulSet 'my-cluster-nodes' is owned by other-uid"


def test_ownership_conflict_without_owner():
    error = OwnershipConflict("Service", "es-svc", None)
    assert error.message == "Service 'es-svc' is owned by nobody"


def test_logging_setup():
    """Test that logging can be configured."""
    setup_logging(level="INFO", verbose=False)

    logger = get_logger("test")
    assert logger.name == "test"
    assert logging.getLogger().level == logging.INFO


def test_logging_with_verbose():
    """Test that verbose mode sets DEBUG level."""
    setup_logging(verbose=True)
    assert logging.getLogger().level == logging.DEBUG


def test_logging_quiets_client_libraries():
    setup_logging(verbose=True)
    assert logging.getLogger("urllib3").level == logging.WARNING
    assert logging.getLogger("kubernetes").level == logging.WARNING


def test_logging_with_file(tmp_path):
    log_file = tmp_path / "logs" / "operator.log"
    setup_logging(log_file=log_file)

    get_logger("test").info("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_file.exists()
    assert "hello" in log_file.read_text()
