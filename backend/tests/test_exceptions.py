from operations.core.exceptions import (
    DuplicateWorkflowDefinitionVersionError,
    InteractionSourceNotFoundError,
    InvalidArgumentError,
    WorkflowNotFoundError,
)


class TestProblemDocuments:
    def test_multi_word_not_found_title(self):
        problem = InteractionSourceNotFoundError("support-mailbox", "tenant-1").to_problem()
        assert problem["title"] == "Interaction Source Not Found"
        assert problem["type"].endswith("/interaction-source-not-found")
        assert problem["status"] == 404

    def test_multi_word_duplicate_title(self):
        error = DuplicateWorkflowDefinitionVersionError("customer_onboarding", 2)
        assert error.title == "Duplicate Workflow Definition Version"
        assert error.status_code == 409
        assert "customer_onboarding v2" in error.message

    def test_single_word_title(self):
        assert WorkflowNotFoundError("wf-1").title == "Workflow Not Found"

    def test_invalid_argument_names_parameter(self):
        problem = InvalidArgumentError("source_id", "unknown source").to_problem()
        assert problem["parameter"] == "source_id"
        assert problem["status"] == 400
