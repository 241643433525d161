"""Prompts used by the built-in flows."""

from .registry import PromptRegistry

PLAN_EXECUTOR_QUERY = """Current step: ${task}
Context: ${past_steps}

Execution rules:
1. Carry out only the current step.
2. Use the results of the finished steps where they help.
3. Reply with the result of the step, without planning further steps."""

PLAN_REPLANNER_QUERY = """The target of user is:
${query}

The origin plan is:
${plan}

We have finished the following steps:
${past_steps}

Please update the plan. If no more steps are needed and you can answer the user, respond with:
{"response": "your answer"}
Otherwise respond with the steps that still need to be done:
{"steps": ["step", "..."]}"""

PLAN_SUMMARY_SYSTEM = "Please answer user questions based on the given plan."

PLAN_SUMMARY_USER = "Your objective was this: ${query}\n---\nFor the following plan: ${plan}"

REFLEXION_EVALUATION = """Please evaluate the quality of the following answer:

Original Question: ${query}

Answer: ${answer}

Please evaluate based on these criteria:
1. Accuracy: Is the information correct and factual?
2. Completeness: Does it fully address the user's question?
3. Clarity: Is it well-structured and easy to understand?
4. Relevance: Does it stay focused on the user's needs?

Return your evaluation as JSON:
{"is_satisfactory": true, "evaluation_reason": "...", "improvement_suggestions": "..."}"""

REFLEXION_IMPROVEMENT = """${original_query}

Please improve your previous answer based on the following feedback:
${improvement_suggestions}

Previous answer: ${previous_answer}"""

REFLEXION_RETRY = "${query}\n\nPlease provide a better answer. Previous attempt had issues: ${reason}"

REFLEXION_FINAL_SYSTEM = "You need to provide the best possible answer based on previous attempts and feedback."

REFLEXION_FINAL_USER = (
    "Original user question: ${query}\n\n"
    "Please provide the best possible answer based on the above question, "
    "considering previous feedback and attempts."
)

PromptRegistry.register("flow.plan_executor_query", PLAN_EXECUTOR_QUERY)
PromptRegistry.register("flow.plan_replanner_query", PLAN_REPLANNER_QUERY)
PromptRegistry.register("flow.plan_summary_system", PLAN_SUMMARY_SYSTEM)
PromptRegistry.register("flow.plan_summary_user", PLAN_SUMMARY_USER)
PromptRegistry.register("flow.reflexion_evaluation", REFLEXION_EVALUATION)
PromptRegistry.register("flow.reflexion_improvement", REFLEXION_IMPROVEMENT)
PromptRegistry.register("flow.reflexion_retry", REFLEXION_RETRY)
PromptRegistry.register("flow.reflexion_final_system", REFLEXION_FINAL_SYSTEM)
PromptRegistry.register("flow.reflexion_final_user", REFLEXION_FINAL_USER)
