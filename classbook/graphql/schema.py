import strawberry

from classbook.graphql.bookings.mutations import BookingMutation
from classbook.graphql.bookings.queries import BookingQuery
from classbook.graphql.class_sessions.mutations import ClassSessionMutations
from classbook.graphql.class_sessions.queries import ClassSessionQueries
from classbook.graphql.no_shows.mutations import NoShowMutations
from classbook.graphql.no_shows.queries import NoShowQueries


@strawberry.type
class Query(BookingQuery, ClassSessionQueries, NoShowQueries):
    @strawberry.field
    def hello(self) -> str:
        return "Hello from GraphQL!"


@strawberry.type
class Mutation(BookingMutation, ClassSessionMutations, NoShowMutations):
    pass


schema = strawberry.Schema(query=Query, mutation=Mutation)
