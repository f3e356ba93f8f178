from django.dispatch import Signal

# Sent once the question edit has committed.
# kwargs: question_id, changed_fields
correct_answer_changed = Signal()
