import sys
import os
import argparse

# Add parent to path
sys.path.insert(0, os.getcwd())

from fhe_feedback.client import FeedbackClient, FeedbackForm
from fhe_feedback.core.config_loader import load_and_validate_config
from fhe_feedback.service import FeedbackService

SAMPLE_FEEDBACK = [
    # (citizen, service type, satisfaction, response time, comment)
    ("citizen-a", 2, 5, 10, "Handled on the spot"),
    ("citizen-b", 2, 3, 30, "Had to call twice"),
    ("citizen-c", 2, 4, 20, "Reasonable"),
    ("citizen-d", 4, 2, 90, "Nobody answered"),
]

EXPECTED = {"count": 3, "total_rating": 12, "avg_rating": 4, "avg_response_time": 20, "improvement_score": 76}


def verify_reveal_flow(config_path: str, oblivious: bool) -> bool:
    print("Testing encrypted feedback reveal flow...")

    service = FeedbackService(config=load_and_validate_config(config_path))
    client = FeedbackClient(service.backend)
    admin = service.access.admin

    for citizen, service_type, satisfaction, response_time, comment in SAMPLE_FEEDBACK:
        form = FeedbackForm(service_type=service_type, feedback_text=comment, satisfaction_level=satisfaction)
        feedback_id = service.submit_feedback(citizen, client.encrypt_form(form, response_time))
        if oblivious:
            service.update_aggregate_oblivious(feedback_id)
        else:
            service.update_aggregate(service_type, feedback_id)

    print(f"Submitted {len(SAMPLE_FEEDBACK)} feedback records ({'oblivious' if oblivious else 'explicit'} routing)")

    service.grant_manager(admin, "verifier")
    request_id = service.request_reveal("verifier", 2)
    print(f"Reveal requested (request {request_id}), delivering...")

    outcome = service.deliver()
    if outcome.get(request_id) is not None:
        print(f"FAILURE: delivery rejected: {outcome[request_id]}")
        return False

    snapshot = service.get_decrypted(2).to_dict()
    print(f"Revealed: {snapshot}")

    mismatches = {k: (snapshot[k], v) for k, v in EXPECTED.items() if snapshot[k] != v}
    if mismatches:
        print(f"FAILURE: unexpected values (got, expected): {mismatches}")
        return False

    print(f"Oracle health: {service.oracle_health.get_status()}")
    print("SUCCESS: Reveal flow verified.")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the submit -> aggregate -> reveal flow end to end")
    parser.add_argument("--config", default="config/config.yaml")
    parser.add_argument("--oblivious", action="store_true", help="route by encrypted service type")
    args = parser.parse_args()

    sys.exit(0 if verify_reveal_flow(args.config, args.oblivious) else 1)
