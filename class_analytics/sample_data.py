"""Small behavior log and gradebook in the school export layout, for demos and tests."""

from typing import Tuple

SAMPLE_BEHAVIOR_CSV = """\
IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE
IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE
מס',שם המורה,מקצוע,תאריך,שיעור,נושא,ת.ז,שם התלמיד,שכבה,כיתה,סוג האירוע,הצדקה,"הוצדק ע""י",הערה
1,רבקה כהן,מתמטיקה,01/09/2024,1,אלגברה,123456789,ישראל ישראלי,ח,1,הגעה בזמן,,,
2,דוד לוי,היסטוריה,05/09/2024,3,מלה״ע 2,123456789,ישראל ישראלי,ח,1,חיסור,ללא הצדקה,,נעדר מהשיעור
3,רבקה כהן,מתמטיקה,10/09/2024,2,גיאומטריה,987654321,דניאל כהן,ח,1,מילה טובה,,,השתתפות מעולה
4,שרה אברהם,אנגלית,12/09/2024,4,Vocabulary,123456789,ישראל ישראלי,ח,1,אי הכנת שיעורי בית,,,
"""

SAMPLE_GRADES_CSV = """\
IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE
IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE,IGNORE
מס',ת.ז,שם התלמיד,שכבה,כיתה,שליליים,מתמטיקה רבקה כהן [101] בחן 1 02/09/2024 משקל 10,היסטוריה דוד לוי [102] עבודה 06/09/2024 משקל 20,אנגלית שרה אברהם [103] מבחן מחצית 14/09/2024 משקל 30
1,123456789,ישראל ישראלי,ח,1,2,85,60,60
2,987654321,דניאל כהן,ח,1,0,,90,92
"""


def generate_sample_data() -> Tuple[str, str]:
    """
    Return (behavior_csv, grades_csv) for a two-student class.

    ישראל ישראלי averages about 64 with a falling grade line, one unexcused
    absence and one missing-homework event; דניאל כהן has two high grades
    and a single commendation.
    """
    return SAMPLE_BEHAVIOR_CSV, SAMPLE_GRADES_CSV
