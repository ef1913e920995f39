from typing import Optional


class PromptService:
    @staticmethod
    def get_extract_questions_prompt() -> str:
        return r"""You are an OCR and structuring assistant for Bangladeshi Srijonshil (creative) questions.
The attached images contain one or more of these questions.

A Srijonshil question has two parts:
- A stem (উদ্দীপক): the unlabeled scenario, paragraph or diagram at the top of the set.
- Four sub-questions labeled "a.", "b.", "c.", "d." or "ক.", "খ.", "গ.", "ঘ." that follow the stem.

For every complete question you find, output TWO JSON objects in sequence:
1. The original object, holding the text exactly as printed.
2. The translated object, holding a natural translation into the other language
   (Bangla if the original is English, English if the original is Bangla).

Both objects use the keys "stem", "a", "b", "c", "d".
Map Bengali labels to English keys: ক -> "a", খ -> "b", গ -> "c", ঘ -> "d".
Never use the Bengali labels as keys and never repeat the label inside the value.
Only extract sets that have a clear stem and at least one labeled sub-question.

Formatting:
- Keep every formula and symbol in LaTeX inside $ ... $ in both objects.
  "4 × 10^-5" becomes "$4 \\times 10^{-5}$", π becomes "\\pi", H2O becomes "H_{2}O".
- Recreate tables with a LaTeX array or tabular environment inside $ ... $.
- Inside JSON strings every LaTeX backslash MUST be doubled ("\\times", "\\vec").

Example:
[
  {"stem": "Original stem", "a": "Original a", "b": "Original b", "c": "Original c", "d": "Original d"},
  {"stem": "Translated stem", "a": "Translated a", "b": "Translated b", "c": "Translated c", "d": "Translated d"}
]

If a sub-question is missing, keep its key with an empty string.
Do not answer the questions.
Return ONLY the JSON array, without markdown fences or commentary.
"""

    @staticmethod
    def get_extract_answers_prompt() -> str:
        return r"""You are an OCR and structuring assistant. The attached images contain the solutions
to the four sub-questions of one Bangladeshi Srijonshil (creative) question.

Each solution is labeled "a.", "b.", "c.", "d." or "ক.", "খ.", "গ.", "ঘ.".

Your task:
1. Extract the solution for each label.
2. Write the English solutions clearly. For calculations show the steps directly,
   use arrows (->, =>) between steps and refer to equations as "Eqn (1) + Eqn (2)".
   Do not narrate the math ("by substituting ..."), just show it.
3. Translate the English solutions into academic Bangla for the national curriculum.

Return a JSON array with exactly two objects: English first, Bangla second.
Both use the keys "aAnswer", "bAnswer", "cAnswer", "dAnswer"
(ক -> "aAnswer", খ -> "bAnswer", গ -> "cAnswer", ঘ -> "dAnswer").

Formatting:
- Keep formulas in LaTeX inside $ ... $: "a/b" becomes "$\\frac{a}{b}$", α becomes "\\alpha".
- Inside JSON strings every LaTeX backslash MUST be doubled ("\\times", "\\frac").

Example:
[
  {"aAnswer": "English a", "bAnswer": "English b", "cAnswer": "English c", "dAnswer": "English d"},
  {"aAnswer": "Bangla a", "bAnswer": "Bangla b", "cAnswer": "Bangla c", "dAnswer": "Bangla d"}
]

If a solution is missing, keep its key with an empty string.
Do not copy the question text.
Return ONLY the JSON array, without markdown fences or commentary.
"""

    @staticmethod
    def with_options(
        prompt: str,
        num_blocks: Optional[int] = None,
        custom_instructions: Optional[str] = None,
    ) -> str:
        """Appends caller hints to a base prompt."""
        extras = []
        if num_blocks:
            extras.append(
                f"The images contain {num_blocks} question set(s); "
                f"return exactly {num_blocks * 2} objects."
            )
        if custom_instructions and custom_instructions.strip():
            extras.append(f"Additional instructions:\n{custom_instructions.strip()}")
        if not extras:
            return prompt
        return prompt + "\n" + "\n\n".join(extras) + "\n"
