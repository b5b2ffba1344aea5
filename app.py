
import json
import os

import pandas as pd
import streamlit as st

from criteria_compiler.audit.logger import configure_logging, write_audit
from criteria_compiler.config import get_settings
from criteria_compiler.pipeline import CriteriaCompiler
from criteria_compiler.sql.builder import preview, to_select

settings = get_settings()
configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

if not settings.VALUE_MAPPINGS_CSV and os.path.exists('data/value_mappings.csv'):
    settings = settings.model_copy(update={'VALUE_MAPPINGS_CSV': 'data/value_mappings.csv'})

@st.cache_resource
def get_compiler() -> CriteriaCompiler:
    return CriteriaCompiler.from_settings(settings)

def conditions_frame(criteria: dict) -> pd.DataFrame:
    rows = []
    for group_id, operator, conditions in [(None, criteria['rootOperator'], criteria['conditions'])] + [
            (g['id'], g['operator'], g['conditions']) for g in criteria['conditionGroups']]:
        for c in conditions:
            rows.append({
                'group': group_id or '-',
                'operator': operator,
                'id': c['id'],
                'type': c['type'],
                'column': c.get('columnKey'),
                'condition': c.get('operator') or c.get('eventType'),
                'value': c.get('value', c.get('count')),
                'value2': c.get('value2', c.get('timeValue')),
            })
    return pd.DataFrame(rows)

st.set_page_config(page_title='Segment criteria compiler', layout='wide')
st.title('Segment criteria compiler')

st.sidebar.header('Describe the segment')
default_text = 'female customers in Los Angeles who purchased at least 2 times in the last 3 months'
text = st.sidebar.text_area('Natural-language segment request', value=default_text, height=120)

if st.sidebar.button('Interpret'):
    result = get_compiler().compile_text(text)
    if result.rejected:
        st.warning(result.message)
    else:
        criteria = result.criteria.to_dict()
        st.subheader('Criteria (storage shape)')
        st.code(json.dumps(criteria, ensure_ascii=False, indent=2), language='json')
        st.dataframe(conditions_frame(criteria))

        st.subheader('Explanation')
        for line in result.explanation:
            st.write(f'- {line}')

        sql, params = to_select(result.criteria)
        st.subheader('SQL preview (not executed)')
        st.code(preview(sql, params), language='sql')
        st.caption(f'params: {params}')

        st.session_state['result'] = result
        st.session_state['sql'] = (sql, params)

if st.button('Save audit record'):
    result = st.session_state.get('result')
    if result is None:
        st.warning('Interpret a request first.')
    else:
        sql, params = st.session_state['sql']
        path = write_audit(result.query, result.original.model_dump(), result.criteria.to_dict(), sql, params,
                           outdir=settings.AUDIT_DIR)
        st.success(f'Audit record written: {path}')
