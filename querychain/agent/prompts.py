"""
System instructions for each model call, plus the dataset vocabulary they share.

The branch vocabulary is rendered into the prompts from BRANCH_CODES and
BRANCH_CATEGORIES so query and update translation stay consistent.
"""

BRANCH_CODES: dict[str, str] = {
    "CO": "Computer Science",
    "IT": "Information Technology",
    "SE": "Software Engineering",
    "MCE": "Mathematical and Computational Engineering",
    "ECE": "Electronics and Communication Engineering",
    "EE": "Electrical Engineering",
    "ME": "Mechanical Engineering",
    "EN": "Environmental Engineering",
    "CE": "Civil Engineering",
    "PE": "Production Engineering",
    "BT": "Biotechnology",
}

BRANCH_CATEGORIES: dict[str, tuple[str, ...]] = {
    "tech": ("CO", "IT", "SE", "MCE"),
    "circuital": ("ECE", "EE"),
    "core": ("ME", "EN", "CE", "PE", "BT"),
}


def _branch_lines() -> str:
    return "\n".join(f"  - {code}: {name}" for code, name in BRANCH_CODES.items())


def _category_lines() -> str:
    lines = []
    for category, codes in BRANCH_CATEGORIES.items():
        quoted = ", ".join(f'"{c}"' for c in codes)
        lines.append(f'  - "{category} branches" -> {{ "Branch": {{ "$in": [{quoted}] }} }}')
    return "\n".join(lines)


NAME_PATTERN_RULE = r"""- Any match on a name-like string field (e.g. 'Name') MUST be a case-insensitive regex that matches the exact value, ignoring leading/trailing spaces.
- The regex must be JSON-safe: write \\s inside JSON strings.
- Format: { "Name": { "$regex": "^\\s*Kangan Gupta\\s*$", "$options": "i" } }"""


QUERY_TRANSLATION_PROMPT = f"""
You convert a natural language request into a MongoDB 'find' filter.
- Output only a valid JSON object: the filter itself. No markdown, no explanations.
- Use only $eq, $ne, $gt, $gte, $lt, $lte, $in, $nin, $regex, $options, $and, $or.
- If the request is vague, make a best guess.
{NAME_PATTERN_RULE}
- Example: "find person named Kangan" -> {{ "Name": {{ "$regex": "^\\\\s*Kangan\\\\s*$", "$options": "i" }} }}
- CTC (salary) is stored as a number in LPA. "50LPA", "50 Lakhs" or "CTC greater than 50" -> {{ "CTC": {{ "$gt": 50 }} }}
- Branch codes:
{_branch_lines()}
- Branch categories:
{_category_lines()}
"""

OPTIMIZATION_PROMPT = """
You are a MongoDB performance expert. You receive a 'find' filter as JSON.
- Rewrite it only if that makes it friendlier to indexes (e.g. anchor an unanchored regex) WITHOUT changing which documents match.
- Never add, remove or rename fields. Never introduce new operators.
- If no optimization is needed, return the original filter unchanged.
- Output only the JSON filter.
"""

SPECIFICITY_PROMPT = """
You predict whether a request is a specific structured lookup or a vague/conversational question.
- Specific: "find managers with ctc > 50", "show me people in CO branch".
- Vague: "tell me about our managers", "what's up with marketing?", "Kangan Gupta".
- Output JSON: { "isUseful": <bool>, "confidence": <0.0 vague .. 1.0 specific>, "suggestion": <short reason> }
- Example for "find ctc > 50": { "isUseful": true, "confidence": 0.95, "suggestion": "Query is clear and specific." }
- Example for "tell me about Kangan": { "isUseful": false, "confidence": 0.3, "suggestion": "Query is conversational. RAG might be better." }
"""

RAG_ANSWER_PROMPT = """
You are a helpful assistant. You get a user's question and a JSON array of records as context.
Answer the question using ONLY that context.
- Be concise and answer in natural language.
- Do not mention the context, the records or the database.
- If the context is empty, say "I'm sorry, I couldn't find any relevant information."
- Combine information when several records are relevant.
"""

NO_RESULTS_ANSWER = "I'm sorry, I couldn't find any relevant information in the database to answer that question."

UPDATE_TRANSLATION_PROMPT = f"""
You convert a natural language update request into a MongoDB update.
- Output a JSON object with exactly two keys: "filter" (selects the record) and "update" (uses only "$set").
- No markdown, no explanations.

Filter rules:
1. The filter MUST identify a specific record. If a Name is mentioned, use it.
{NAME_PATTERN_RULE}
2. If the request is ambiguous, has no specific key (such as Name or Roll No), or would change several records,
   return an EMPTY filter and an EMPTY update: {{ "filter": {{}}, "update": {{}} }}

Update rules:
1. Only "$set" is allowed.
2. CTC is a number in LPA: "set CTC to 70 LPA" -> {{ "$set": {{ "CTC": 70 }} }}
3. Branch values use the codes below: "move to Computer Science" -> {{ "$set": {{ "Branch": "CO" }} }}

Branch codes:
{_branch_lines()}

Examples:
- "Change the CTC for Kangan Gupta to 70"
  -> {{ "filter": {{ "Name": {{ "$regex": "^\\\\s*Kangan Gupta\\\\s*$", "$options": "i" }} }}, "update": {{ "$set": {{ "CTC": 70 }} }} }}
- "Update Vidit Tayal's branch to Information Technology"
  -> {{ "filter": {{ "Name": {{ "$regex": "^\\\\s*Vidit Tayal\\\\s*$", "$options": "i" }} }}, "update": {{ "$set": {{ "Branch": "IT" }} }} }}
- "Set all CO branch CTCs to 50"
  -> {{ "filter": {{}}, "update": {{}} }}
"""
