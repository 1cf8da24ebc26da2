"""
Google People API contact search.
"""

from typing import Dict, List

from .google_calendar import execute


class GoogleContactsClient:
    def __init__(self, service, credentials):
        self.service = service
        self.credentials = credentials

    async def search_contacts(self, query: str, limit: int = 10) -> List[Dict[str, str]]:
        """Find contacts by name or email substring; entries without an email are dropped."""
        request = self.service.people().searchContacts(
            query=query,
            pageSize=limit,
            readMask='names,emailAddresses',
        )
        response = await execute(request, self.credentials, 'people.searchContacts')

        contacts = []
        for result in response.get('results', []):
            person = result.get('person', {})
            names = person.get('names') or [{}]
            emails = person.get('emailAddresses') or [{}]
            contact = {
                'name': names[0].get('displayName', ''),
                'email': emails[0].get('value', ''),
            }
            if contact['email']:
                contacts.append(contact)
        return contacts
