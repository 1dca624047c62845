import json
import sys

from machine_advisor.api.main import default_agent

if __name__ == "__main__":
    question = " ".join(sys.argv[1:]) or "Which machines are at high risk?"
    agent = default_agent()
    out = agent.execute(question)

    print("query_type:", out.get("query_type"))
    print("clarification:", bool(out.get("needs_clarification")))
    print("response:", out.get("response"))
    structured = out.get("structured_response")
    if structured is not None:
        print("structured:", json.dumps(structured.model_dump(mode="json"), indent=2, ensure_ascii=False))
