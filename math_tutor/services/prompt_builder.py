import json
from typing import List, Dict, Any

class PromptBuilder:
	def build(self, template_text: str, *, duration_minutes: int, exercise_count: int, weak_subtopics: List[Dict[str, Any]], recent_mistakes: List[str], untouched_subtopics: List[str], available_subtopics: List[Dict[str, Any]], focus_areas: List[str]) -> str:
		context = {
			"meta": {"duration_minutes": duration_minutes, "exercise_count": exercise_count},
			"weak_subtopics": weak_subtopics,
			"recent_mistakes": recent_mistakes,
			"untouched_subtopics": untouched_subtopics,
			"selected_focus_areas": focus_areas,
			"available_subtopics": available_subtopics,
			"format": {
				"exercises": [{
					"subtopicId": "string (one of available_subtopics[].id)",
					"subtopicName": "string",
					"topicName": "string",
					"difficulty": "easy|medium|hard",
					"reason": "string",
					"estimatedMinutes": "integer 3-5",
				}],
				"focusAreas": ["string"],
				"planRationale": "string",
			}
		}
		instructions = (
			"Use the CONTEXT JSON below to plan the session. "
			f"Plan exactly {exercise_count} exercises for a {duration_minutes}-minute session. "
			"Only use subtopic ids listed in available_subtopics. "
			"Return only the required JSON object, no markdown."
		)
		return template_text + "\n" + instructions + "\n" + json.dumps(context)
